# src/evdispatch/synth/mock_handlers.py
from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, List, Optional

from evdispatch.core import log
from evdispatch.core.context import Context
from evdispatch.core.contracts import EventLike


class RecordingHandler:
    """Keeps every (ctx, event) it receives; safe to share across threads."""

    def __init__(self, label: str = "recorder", error: Optional[BaseException] = None):
        self.label = label
        self.error = error
        self._lock = threading.Lock()
        self._seen: List[tuple] = []

    def handle(self, ctx: Context, event: EventLike):
        with self._lock:
            self._seen.append((ctx, event))
        return self.error

    @property
    def events(self) -> List[EventLike]:
        with self._lock:
            return [ev for _, ev in self._seen]

    @property
    def contexts(self) -> List[Context]:
        with self._lock:
            return [c for c, _ in self._seen]

    @property
    def calls(self) -> int:
        with self._lock:
            return len(self._seen)

    def __repr__(self) -> str:
        return f"RecordingHandler({self.label})"


class FailingHandler(RecordingHandler):
    """Records the call, then reports `error` (raises it if raise_=True)."""

    def __init__(self, error: Optional[BaseException] = None, label: str = "failing", raise_: bool = False):
        super().__init__(label=label, error=error or RuntimeError(f"{label} failed"))
        self.raise_ = raise_

    def handle(self, ctx: Context, event: EventLike):
        err = super().handle(ctx, event)
        if self.raise_:
            raise err
        return err


class SlowHandler:
    """Async handler that sleeps `delay` seconds unless ctx finishes first."""

    def __init__(self, delay: float = 0.1, label: str = "slow"):
        self.delay = float(delay)
        self.label = label
        self.started = 0
        self.finished = 0
        self._lock = threading.Lock()

    async def handle(self, ctx: Context, event: EventLike):
        with self._lock:
            self.started += 1
        end = time.monotonic() + self.delay
        while True:
            err = ctx.err()
            if err is not None:
                return err
            left = end - time.monotonic()
            if left <= 0:
                break
            await asyncio.sleep(min(0.01, left))
        with self._lock:
            self.finished += 1
        return None


class LoggingHandler:
    """Logs each event it receives at `level`."""

    def __init__(self, logger_name: str = "evdispatch.events", level: str = "INFO", label: Any = None):
        self.l = log.get(logger_name)
        self.level = level.upper()
        self.label = label or logger_name

    def handle(self, ctx: Context, event: EventLike):
        self.l.log(getattr(logging, self.level, logging.INFO), "event=%s payload=%r", event.name, event.payload)
        return None
