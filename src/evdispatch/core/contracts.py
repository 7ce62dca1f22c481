"""
evdispatch.core.contracts
Collaborator contracts around the dispatcher: the Event envelope, the
Handler capability and the dispatcher surface itself.
"""
from __future__ import annotations

import inspect
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:  # pragma: no cover
    from evdispatch.core.context import Context

__all__ = [
    "EventName",
    "Event",
    "EventLike",
    "Handler",
    "HandlerResult",
    "FuncHandler",
    "DispatcherLike",
]


EventName = str

# None means success; an exception instance is the failure reason
HandlerResult = Optional[BaseException]


@dataclass(frozen=True, slots=True)
class Event:
    """Named occurrence with an opaque payload."""
    name: EventName
    payload: Any = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ts: float = field(default_factory=time.time)
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Event":
        return cls(**d)


@runtime_checkable
class EventLike(Protocol):
    """Anything with a name and a payload can be dispatched."""
    name: EventName
    payload: Any


@runtime_checkable
class Handler(Protocol):
    """handle() may be a plain method or a coroutine method."""
    def handle(self, ctx: "Context", event: EventLike) -> Union[HandlerResult, Awaitable[HandlerResult]]: ...


class FuncHandler:
    """Reference box that turns a callable into a Handler.

    Registration compares boxes by identity, so wrapping the same function
    twice yields two independent registrations.
    """
    __slots__ = ("fn", "label", "is_async")

    def __init__(self, fn: Callable[..., Any], label: Optional[str] = None):
        if not callable(fn):
            raise TypeError(f"FuncHandler needs a callable, got {type(fn).__name__}")
        self.fn = fn
        self.label = label or getattr(fn, "__name__", "anon")
        self.is_async = inspect.iscoroutinefunction(fn)

    def handle(self, ctx: "Context", event: EventLike):
        return self.fn(ctx, event)

    def __repr__(self) -> str:
        return f"FuncHandler({self.label})"


@runtime_checkable
class DispatcherLike(Protocol):
    def register(self, name: EventName, handler: Handler) -> None: ...
    def remove(self, name: EventName, handler: Handler) -> None: ...
    def has(self, name: EventName, handler: Handler) -> bool: ...
    async def dispatch(self, ctx: "Context", event: EventLike) -> List[BaseException]: ...
    def clear(self) -> None: ...
