"""In-process counters exported in Prometheus text format."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"")


class Counter:
    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names = tuple(label_names or ())
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        key = tuple(str((labels or {}).get(name, "")) for name in self.label_names)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = tuple(str((labels or {}).get(name, "")) for name in self.label_names)
        with self._lock:
            return self._values.get(key, 0.0)

    def export(self) -> List[str]:
        lines = [f"# TYPE {self.name} counter"]
        with self._lock:
            for key, amount in sorted(self._values.items()):
                if self.label_names:
                    rendered = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, key))
                    lines.append(f"{self.name}{{{rendered}}} {amount}")
                else:
                    lines.append(f"{self.name} {amount}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names)
            return self._counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for counter in self._counters.values():
            lines.extend(counter.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for counter in self._counters.values():
            counter.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", ["method", "status"])
entitlement_denied_total = METRICS.counter("entitlement_denied_total", ["capability"])
ai_attempts_total = METRICS.counter("ai_attempts_total", ["provider", "outcome"])
ai_failover_total = METRICS.counter("ai_failover_total", ["from_provider", "to_provider"])
rag_degraded_total = METRICS.counter("rag_degraded_total")
