# src/evdispatch/wire_config.py
from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any, Dict, List, Tuple

from evdispatch.core import log
from evdispatch.core.config import DispatcherConfig, read_yaml
from evdispatch.core.dispatcher import Dispatcher

l = log.get("evdispatch.wire")


def _imp(module: str, cls: str):
    mod = importlib.import_module(module)
    return getattr(mod, cls)


def _events_of(entry: Dict[str, Any]) -> List[str]:
    events = entry.get("events")
    if events is None and "event" in entry:
        events = [entry["event"]]
    if not events:
        raise ValueError(f"handler {entry.get('class')!r} lists no events")
    if isinstance(events, str):
        events = [events]
    return [str(e) for e in events]


def build_from_yaml(yaml_path: str | Path) -> Tuple[Dispatcher, List[Any]]:
    """
    Build a Dispatcher from YAML:

        dispatcher:
          name: orders
          max_workers: 4
        handlers:
          - module: evdispatch.synth.mock_handlers
            class: LoggingHandler
            args: {level: DEBUG}
            events: [order.created, order.paid]

    One instance is created per entry and registered under each listed event.
    """
    data = read_yaml(yaml_path)
    dispatcher = Dispatcher(DispatcherConfig.from_dict(data.get("dispatcher")))

    handlers: List[Any] = []
    for entry in data.get("handlers") or []:
        HandlerCls = _imp(entry["module"], entry["class"])
        instance = HandlerCls(**(entry.get("args") or {}))
        for name in _events_of(entry):
            dispatcher.register(name, instance)
        handlers.append(instance)
        l.info("wired %s.%s -> %s", entry["module"], entry["class"], _events_of(entry))

    return dispatcher, handlers
