from __future__ import annotations

import threading
from time import time
from typing import Dict, Tuple

# Process-local metrics (single worker). Counters, gauges and summaries (sum,count),
# exposed in Prometheus text format at /api/metrics.

PREFIX = "med1_"

LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class _Registry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.counters: Dict[LabelKey, float] = {}
        self.gauges: Dict[LabelKey, float] = {}
        self.summaries: Dict[LabelKey, Tuple[float, int]] = {}

    def clear(self) -> None:
        with self.lock:
            self.counters.clear()
            self.gauges.clear()
            self.summaries.clear()


_registry = _Registry()


def _key(name: str, labels: Dict[str, str] | None) -> LabelKey:
    full = name if name.startswith(PREFIX) else PREFIX + name
    return full, tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def counter_inc(name: str, labels: Dict[str, str] | None = None, amount: float = 1.0) -> None:
    k = _key(name, labels)
    with _registry.lock:
        _registry.counters[k] = _registry.counters.get(k, 0.0) + float(amount)


def gauge_inc(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    k = _key(name, labels)
    with _registry.lock:
        _registry.gauges[k] = _registry.gauges.get(k, 0.0) + float(amount)


def gauge_dec(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    gauge_inc(name, -float(amount), labels)


def summary_observe(name: str, value: float, labels: Dict[str, str] | None = None) -> None:
    k = _key(name, labels)
    with _registry.lock:
        s, c = _registry.summaries.get(k, (0.0, 0))
        _registry.summaries[k] = (s + float(value), c + 1)


def counter_value(name: str, labels: Dict[str, str] | None = None) -> float:
    with _registry.lock:
        return _registry.counters.get(_key(name, labels), 0.0)


def reset_metrics() -> None:
    _registry.clear()


def _fmt_labels(items: Tuple[Tuple[str, str], ...]) -> str:
    if not items:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in items) + "}"


def render_prometheus() -> str:
    lines: list[str] = []
    with _registry.lock:
        for (name, items), val in sorted(_registry.counters.items()):
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), val in sorted(_registry.gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), (s, c) in sorted(_registry.summaries.items()):
            lines.append(f"# TYPE {name} summary")
            lines.append(f"{name}_sum{_fmt_labels(items)} {s}")
            lines.append(f"{name}_count{_fmt_labels(items)} {c}")
    lines.append(f"# EOF {int(time())}")
    return "\n".join(lines) + "\n"
