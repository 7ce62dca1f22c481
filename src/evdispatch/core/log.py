from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s %(name)s | %(message)s"
_TRUTHY = {"1", "true", "yes", "on"}

_configured = False


class JsonFormatter(logging.Formatter):
    """Renders a record as one JSON object (ts, lvl, name, msg + call site)."""

    site_fields = ("filename", "lineno", "funcName")

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": record.created,
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        doc.update((k, getattr(record, k, None)) for k in self.site_fields)
        if record.exc_info:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class _OwnedHandler(logging.StreamHandler):
    """The stdout handler setup() installs; only these are swapped on re-setup."""


def _level(name: str) -> int:
    lvl = logging.getLevelName(name.strip().upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def _env_flag(var: str) -> bool:
    return os.getenv(var, "0").strip().lower() in _TRUTHY


def _stdout_handler(json_mode: bool) -> logging.Handler:
    h = _OwnedHandler(stream=sys.stdout)
    h.setFormatter(JsonFormatter() if json_mode else logging.Formatter(PLAIN_FORMAT))
    return h


def setup(level: Optional[str] = None, json_mode: Optional[bool] = None, *, force: bool = False) -> None:
    """
    Point the root logger at stdout.

    Arguments left as None fall back to LOG_LEVEL / LOG_JSON, read after
    loading .env. Runs once per process unless force=True; a forced call
    replaces the handler installed earlier and leaves foreign ones alone.
    """
    global _configured
    if _configured and not force:
        return

    load_dotenv()
    use_json = _env_flag("LOG_JSON") if json_mode is None else json_mode

    root = logging.getLogger()
    for h in [h for h in root.handlers if isinstance(h, _OwnedHandler)]:
        root.removeHandler(h)
    root.addHandler(_stdout_handler(use_json))
    root.setLevel(_level(level or os.getenv("LOG_LEVEL", "INFO")))
    _configured = True


def get(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_level(level: str) -> None:
    logging.getLogger().setLevel(_level(level))
