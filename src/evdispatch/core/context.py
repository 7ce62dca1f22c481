from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Optional, Set

from evdispatch.core.errors import ContextCancelled, ContextError, DeadlineExceeded

_MISSING = object()


class Context:
    """
    Cancellation context handed unchanged to every handler of a dispatch.

    - cancel() marks this context and every child derived from it as done
    - a deadline (time.monotonic based) makes err() report DeadlineExceeded
    - values are looked up through the parent chain

    Backed by threading primitives so handlers running in worker threads can
    poll it as well as coroutines.
    """

    def __init__(self, parent: Optional["Context"] = None, *,
                 deadline: Optional[float] = None, key: Any = _MISSING, value: Any = None):
        self._parent = parent
        self._deadline = deadline
        self._key = key
        self._value = value
        self._done = threading.Event()
        self._err: Optional[ContextError] = None
        self._lock = threading.Lock()
        self._children: Set["Context"] = set()
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> "Context":
        return cls()

    # -------------------- derivation --------------------
    def with_cancel(self) -> "Context":
        return Context(self)

    def with_timeout(self, seconds: float) -> "Context":
        if seconds < 0:
            raise ValueError("timeout must be >= 0")
        return Context(self, deadline=time.monotonic() + float(seconds))

    def with_value(self, key: Any, value: Any) -> "Context":
        return Context(self, key=key, value=value)

    def _adopt(self, child: "Context") -> None:
        now = time.monotonic()
        with self._lock:
            err = self._err
            if err is None:
                self._children.add(child)
                # deadlines are checked lazily; reap the ones that lapsed unobserved
                expired = [c for c in self._children if c._deadline is not None and c._deadline <= now]
            else:
                expired = []
        if err is not None:
            child._finish(err)
        for c in expired:
            c.err()

    def _detach(self, child: "Context") -> None:
        with self._lock:
            self._children.discard(child)

    # -------------------- cancellation --------------------
    def cancel(self) -> None:
        self._finish(ContextCancelled())

    def _finish(self, err: ContextError) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            children, self._children = self._children, set()
        self._done.set()
        if self._parent is not None:
            self._parent._detach(self)
        for c in children:
            c._finish(err)

    @property
    def deadline(self) -> Optional[float]:
        """Nearest deadline along the parent chain."""
        ds = []
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._deadline is not None:
                ds.append(ctx._deadline)
            ctx = ctx._parent
        return min(ds) if ds else None

    def err(self) -> Optional[ContextError]:
        if self._err is not None:
            return self._err
        d = self.deadline
        if d is not None and time.monotonic() >= d:
            self._finish(DeadlineExceeded())
            return self._err
        return None

    @property
    def cancelled(self) -> bool:
        return self.err() is not None

    def value(self, key: Any, default: Any = None) -> Any:
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._key is not _MISSING and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return default

    # -------------------- waiting --------------------
    def wait_blocking(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until done or timeout. Returns done-ness."""
        end = None if timeout is None else time.monotonic() + timeout
        while self.err() is None:
            step = 0.05
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    return False
                step = min(step, left)
            self._done.wait(step)
        return True

    async def wait(self, poll_interval: float = 0.01) -> ContextError:
        """Suspend until the context is done, then return its error."""
        while True:
            err = self.err()
            if err is not None:
                return err
            await asyncio.sleep(poll_interval)

    def __repr__(self) -> str:
        state = type(self._err).__name__ if self._err else "active"
        return f"Context({state}, deadline={self.deadline})"
