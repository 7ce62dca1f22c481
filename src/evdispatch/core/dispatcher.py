# src/evdispatch/core/dispatcher.py
from __future__ import annotations

import asyncio
import inspect
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Tuple

from evdispatch.core import log
from evdispatch.core.config import DispatcherConfig
from evdispatch.core.context import Context
from evdispatch.core.contracts import EventLike, EventName, Handler, HandlerResult
from evdispatch.core.errors import EventNotRegistered, HandlerAlreadyRegistered, HandlerNotRegistered
from evdispatch.core.metrics import gauge_set, inc, observe_hist


def _is_async(h: Handler) -> bool:
    flag = getattr(h, "is_async", None)
    if isinstance(flag, bool):
        return flag
    return inspect.iscoroutinefunction(h.handle)


def _label(h: Handler) -> str:
    return getattr(h, "label", None) or type(h).__name__


def _outcome(result: object) -> HandlerResult:
    # anything that is not an exception counts as success
    return result if isinstance(result, BaseException) else None


class Dispatcher:
    """
    Registry of event name -> handlers plus concurrent delivery.

    All registry access goes through one lock. Dispatch copies the handler
    list under that lock, so registrations made while a dispatch is in flight
    only affect later dispatches. A name whose last handler is removed is
    dropped from the map.
    """

    def __init__(self, cfg: Optional[DispatcherConfig] = None):
        self.cfg = cfg or DispatcherConfig()
        self.l = log.get(self.cfg.name)
        self._lock = threading.Lock()
        self._handlers: Dict[EventName, List[Handler]] = {}

    # -------------------- registry --------------------
    def register(self, name: EventName, handler: Handler) -> None:
        with self._lock:
            hs = self._handlers.get(name, [])
            if any(h is handler for h in hs):
                raise HandlerAlreadyRegistered(name, handler)
            hs.append(handler)
            self._handlers[name] = hs
            n = len(hs)
        self.l.debug("register event=%s handler=%s (n=%d)", name, _label(handler), n)
        self._gauge(name, n)

    def remove(self, name: EventName, handler: Handler) -> None:
        with self._lock:
            hs = self._handlers.get(name)
            if not hs:
                raise EventNotRegistered(name)
            for i, h in enumerate(hs):
                if h is handler:
                    del hs[i]
                    break
            else:
                raise HandlerNotRegistered(name, handler)
            if not hs:
                del self._handlers[name]
            n = len(hs)
        self.l.debug("remove event=%s handler=%s (n=%d)", name, _label(handler), n)
        self._gauge(name, n)

    def has(self, name: EventName, handler: Handler) -> bool:
        with self._lock:
            return any(h is handler for h in self._handlers.get(name, ()))

    def clear(self) -> None:
        with self._lock:
            names = list(self._handlers)
            self._handlers = {}
        for name in names:
            self._gauge(name, 0)
        self.l.debug("clear (%d events)", len(names))

    def handlers(self, name: EventName) -> Tuple[Handler, ...]:
        """Registration-ordered snapshot of the handlers bound to name."""
        with self._lock:
            return tuple(self._handlers.get(name, ()))

    def event_names(self) -> List[EventName]:
        with self._lock:
            return list(self._handlers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    # -------------------- delivery --------------------
    async def dispatch(self, ctx: Context, event: EventLike) -> List[BaseException]:
        """
        Deliver event to every handler bound to event.name, concurrently.

        Returns the failures (empty list when every handler succeeded), or
        [EventNotRegistered] when nothing is bound to the name. Waits for all
        handlers; a failing handler never stops its siblings and ctx
        cancellation is left for the handlers to observe.
        """
        name = event.name
        snapshot = self.handlers(name)
        if not snapshot:
            return self._unregistered(name)

        t0 = time.perf_counter()
        # every task is scheduled before any result is awaited
        tasks = [asyncio.create_task(self._invoke(h, ctx, event)) for h in snapshot]
        # a handler cancelling itself comes back as a value; only a cancel of
        # the awaiting task propagates
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        return self._collect(name, snapshot, outcomes, t0)

    def dispatch_blocking(self, ctx: Context, event: EventLike) -> List[BaseException]:
        """Same contract as dispatch() for callers without an event loop."""
        name = event.name
        snapshot = self.handlers(name)
        if not snapshot:
            return self._unregistered(name)

        t0 = time.perf_counter()
        workers = min(len(snapshot), self.cfg.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{self.cfg.name}-dispatch") as pool:
            futures = [pool.submit(self._invoke_blocking, h, ctx, event) for h in snapshot]
            wait(futures)
        outcomes = [f.result() for f in futures]
        return self._collect(name, snapshot, outcomes, t0)

    async def _invoke(self, h: Handler, ctx: Context, event: EventLike) -> HandlerResult:
        try:
            if _is_async(h):
                result = await h.handle(ctx, event)
            else:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, h.handle, ctx, event)
                if inspect.isawaitable(result):
                    result = await result
        except asyncio.CancelledError as e:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return e
        except Exception as e:
            return e
        return _outcome(result)

    @staticmethod
    def _invoke_blocking(h: Handler, ctx: Context, event: EventLike) -> HandlerResult:
        try:
            result = h.handle(ctx, event)
            if inspect.isawaitable(result):
                result = asyncio.run(_await(result))
        except (Exception, asyncio.CancelledError) as e:
            return e
        return _outcome(result)

    def _unregistered(self, name: EventName) -> List[BaseException]:
        self.l.debug("dispatch event=%s: no handlers", name)
        if self.cfg.metrics_enabled:
            inc("dispatch_unregistered_total", 1, event=name)
        return [EventNotRegistered(name)]

    def _collect(self, name: EventName, snapshot, outcomes, t0: float) -> List[BaseException]:
        errs: List[BaseException] = []
        for h, err in zip(snapshot, outcomes):
            if err is None:
                continue
            errs.append(err)
            if self.cfg.log_handler_errors:
                self.l.warning("handler failed event=%s handler=%s err=%r", name, _label(h), err)
        dt_ms = (time.perf_counter() - t0) * 1000.0
        if self.cfg.metrics_enabled:
            inc("dispatch_total", 1, event=name)
            if errs:
                inc("handler_errors_total", len(errs), event=name)
            observe_hist("dispatch_latency_ms", dt_ms, event=name)
        self.l.debug("dispatch event=%s handlers=%d errors=%d dt=%.2fms", name, len(snapshot), len(errs), dt_ms)
        return errs

    def _gauge(self, name: EventName, n: int) -> None:
        if self.cfg.metrics_enabled:
            gauge_set("dispatcher_handlers", float(n), event=name)


async def _await(aw):
    return await aw
