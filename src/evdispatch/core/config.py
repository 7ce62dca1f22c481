from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(key: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    s = str(raw).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"{key}: expected a boolean, got {raw!r}")


@dataclass
class DispatcherConfig:
    name: str = "evdispatch"
    max_workers: int = 8                 # thread fan-out bound for dispatch_blocking
    log_handler_errors: bool = True
    metrics_enabled: bool = True

    def __post_init__(self):
        self.name = str(self.name)
        try:
            self.max_workers = int(self.max_workers)
        except (TypeError, ValueError) as e:
            raise ValueError(f"max_workers: expected an int, got {self.max_workers!r}") from e
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.log_handler_errors = _as_bool("log_handler_errors", self.log_handler_errors)
        self.metrics_enabled = _as_bool("metrics_enabled", self.metrics_enabled)

    @classmethod
    def from_dict(cls, d: Dict[str, Any] | None) -> "DispatcherConfig":
        d = d or {}
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"unknown dispatcher config keys: {sorted(unknown)}")
        return cls(**d)

    @classmethod
    def from_env(cls, prefix: str = "EVDISPATCH_") -> "DispatcherConfig":
        """EVDISPATCH_NAME, EVDISPATCH_MAX_WORKERS, ... override the defaults."""
        load_dotenv()
        d: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is not None:
                d[f.name] = raw
        return cls(**d)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def read_yaml(path: str | Path) -> Dict[str, Any]:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def load_config(path: str | Path) -> DispatcherConfig:
    """Read the `dispatcher:` section of a YAML file."""
    return DispatcherConfig.from_dict(read_yaml(path).get("dispatcher"))
