from __future__ import annotations

import logging
import threading
import time
from collections import deque
from statistics import mean
from typing import Any, Deque, Dict, List, Optional, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


def _labels_key(labels: Dict[str, Any] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _pct(sorted_vals: List[float], q: float) -> float:
    if not sorted_vals:
        return 0.0
    idx = max(0, min(len(sorted_vals) - 1, int(round((len(sorted_vals) - 1) * q))))
    return sorted_vals[idx]


class _Value:
    """Counter / gauge cell."""
    def __init__(self) -> None:
        self._v = 0.0
        self._lock = threading.Lock()

    def add(self, n: float) -> None:
        with self._lock:
            self._v += n

    def set(self, v: float) -> None:
        with self._lock:
            self._v = float(v)

    def value(self) -> float:
        with self._lock:
            return self._v


class _Hist:
    def __init__(self, maxlen: int = 2048) -> None:
        self._values: Deque[float] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def observe(self, v: float) -> None:
        with self._lock:
            self._values.append(float(v))

    def summary(self) -> Dict[str, float]:
        with self._lock:
            vals = sorted(self._values)
        if not vals:
            return {"count": 0, "min": 0.0, "max": 0.0, "mean": 0.0, "p50": 0.0, "p99": 0.0}
        return {
            "count": len(vals),
            "min": vals[0],
            "max": vals[-1],
            "mean": mean(vals),
            "p50": _pct(vals, 0.50),
            "p99": _pct(vals, 0.99),
        }


class _Registry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._cells: Dict[str, Dict[Tuple[str, LabelKey], Any]] = {
            "counters": {}, "gauges": {}, "hists": {},
        }

    def _get(self, kind: str, name: str, labels: Dict[str, Any] | None, factory):
        key = (name, _labels_key(labels))
        with self._lock:
            table = self._cells[kind]
            cell = table.get(key)
            if cell is None:
                cell = table[key] = factory()
            return cell

    def counter(self, name, labels) -> _Value:
        return self._get("counters", name, labels, _Value)

    def gauge(self, name, labels) -> _Value:
        return self._get("gauges", name, labels, _Value)

    def hist(self, name, labels) -> _Hist:
        return self._get("hists", name, labels, _Hist)

    def items(self, kind: str):
        with self._lock:
            return list(self._cells[kind].items())


_REG = _Registry()


def inc(name: str, n: float = 1.0, **labels: Any) -> None:
    _REG.counter(name, labels).add(n)


def gauge_set(name: str, v: float, **labels: Any) -> None:
    _REG.gauge(name, labels).set(v)


def observe_hist(name: str, v: float, **labels: Any) -> None:
    _REG.hist(name, labels).observe(v)


def counter_value(name: str, **labels: Any) -> float:
    """Current value of one counter; 0.0 if it was never touched."""
    for (n, lk), cell in _REG.items("counters"):
        if n == name and lk == _labels_key(labels):
            return cell.value()
    return 0.0


def snapshot() -> dict:
    """Point-in-time copy of every metric (tests and the exporter)."""
    out: dict = {"counters": [], "gauges": [], "hists": []}
    for (name, labels), m in _REG.items("counters"):
        out["counters"].append({"name": name, "labels": dict(labels), "value": m.value()})
    for (name, labels), m in _REG.items("gauges"):
        out["gauges"].append({"name": name, "labels": dict(labels), "value": m.value()})
    for (name, labels), m in _REG.items("hists"):
        out["hists"].append({"name": name, "labels": dict(labels), **m.summary()})
    return out


class Timer:
    """Context manager: elapsed milliseconds go into a histogram."""
    def __init__(self, hist_name: str, **labels: Any) -> None:
        self.hist_name = hist_name
        self.labels = labels
        self._t0 = 0.0

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        observe_hist(self.hist_name, (time.perf_counter() - self._t0) * 1000.0, **self.labels)
        return False


# ---------------- Exporter (log every N seconds) ----------------

class _Exporter(threading.Thread):
    def __init__(self, interval_sec: float = 5.0, json_mode: bool = False, logger: Optional[logging.Logger] = None):
        super().__init__(name="metrics-exporter", daemon=True)
        self.interval = float(interval_sec)
        self.json_mode = bool(json_mode)
        self.log = logger or logging.getLogger("metrics")
        self._stop_evt = threading.Event()

    def run(self) -> None:
        while not self._stop_evt.is_set():
            self.emit()
            self._stop_evt.wait(max(0.5, self.interval))

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_evt.set()
        self.join(timeout=timeout)

    def emit(self) -> None:
        snap = snapshot()
        if self.json_mode:
            for kind, rows in snap.items():
                for row in rows:
                    self.log.info({"type": kind, **row})
            return
        for row in snap["counters"]:
            self.log.info("[ctr] %s %s value=%.0f", row["name"], row["labels"], row["value"])
        for row in snap["gauges"]:
            self.log.info("[gauge] %s %s value=%.3f", row["name"], row["labels"], row["value"])
        for row in snap["hists"]:
            self.log.info(
                "[hist] %s %s n=%d min=%.3f p50=%.3f p99=%.3f max=%.3f",
                row["name"], row["labels"], row["count"], row["min"], row["p50"], row["p99"], row["max"],
            )


_EXPORTER: Optional[_Exporter] = None


def start_exporter(interval_sec: float = 5.0, json_mode: bool = False, logger: Optional[logging.Logger] = None) -> None:
    global _EXPORTER
    if _EXPORTER is not None:
        return
    _EXPORTER = _Exporter(interval_sec=interval_sec, json_mode=json_mode, logger=logger)
    _EXPORTER.start()


def stop_exporter(timeout: float = 1.0) -> None:
    global _EXPORTER
    if _EXPORTER is not None:
        _EXPORTER.stop(timeout=timeout)
        _EXPORTER = None


def force_emit(logger: Optional[logging.Logger] = None, json_mode: bool = False) -> None:
    """Log one snapshot right now."""
    _Exporter(interval_sec=0, json_mode=json_mode, logger=logger).emit()
