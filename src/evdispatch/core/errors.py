"""Errors reported by the dispatcher and by cancellation contexts.

Registry errors are raised from ``register`` / ``remove``.  ``dispatch``
never raises them: an unknown event name comes back as the single element of
its result list.  Handler failures are not represented here; they are
whatever exception object the handler produced.
"""
from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Base class for the dispatcher's own errors."""


class EventNotRegistered(DispatchError):
    def __init__(self, name: str):
        super().__init__(f"event not registered: {name!r}")
        self.name = name


class HandlerNotRegistered(DispatchError):
    def __init__(self, name: str, handler: Any):
        super().__init__(f"handler not registered for event {name!r}: {handler!r}")
        self.name = name
        self.handler = handler


class HandlerAlreadyRegistered(DispatchError):
    def __init__(self, name: str, handler: Any):
        super().__init__(f"handler already registered for event {name!r}: {handler!r}")
        self.name = name
        self.handler = handler


class ContextError(Exception):
    """A context is done; what handlers return when they give up."""


class ContextCancelled(ContextError):
    def __init__(self, msg: str = "context cancelled"):
        super().__init__(msg)


class DeadlineExceeded(ContextError):
    def __init__(self, msg: str = "context deadline exceeded"):
        super().__init__(msg)
