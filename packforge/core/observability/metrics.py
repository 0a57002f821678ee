"""
Metrics — in-process counters and duration histograms.

Feeds the ``MetricsTelemetry`` sink: every tracked event bumps a
counter, every tracked dependency records its duration and outcome.
Thread-safe, because format providers report from worker threads.
"""

from __future__ import annotations

import builtins
import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Counter:
    """Monotonically increasing counter."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)

    def inc(self, n: int = 1) -> None:
        self.value += n

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "counter", "value": self.value, "labels": self.labels}


@dataclass
class Histogram:
    """Simple histogram tracking min, max, sum, count."""

    name: str
    _values: list[float] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def observe(self, value: float) -> None:
        self._values.append(value)

    @property
    def count(self) -> int:
        return len(self._values)

    @property
    def total(self) -> float:
        return sum(self._values)

    @property
    def mean(self) -> float:
        if not self._values:
            return 0.0
        return self.total / self.count

    @property
    def min(self) -> float:
        return builtins.min(self._values) if self._values else 0.0

    @property
    def max(self) -> float:
        return builtins.max(self._values) if self._values else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": "histogram",
            "count": self.count,
            "total": round(self.total, 2),
            "mean": round(self.mean, 2),
            "min": self.min,
            "max": self.max,
            "labels": self.labels,
        }


class MetricsRegistry:
    """Central registry for all metrics."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, **labels: str) -> Counter:
        """Get or create a counter."""
        key = f"{name}:{sorted(labels.items())}" if labels else name
        with self._lock:
            if key not in self._counters:
                self._counters[key] = Counter(name=name, labels=labels)
            return self._counters[key]

    def histogram(self, name: str, **labels: str) -> Histogram:
        """Get or create a histogram."""
        key = f"{name}:{sorted(labels.items())}" if labels else name
        with self._lock:
            if key not in self._histograms:
                self._histograms[key] = Histogram(name=name, labels=labels)
            return self._histograms[key]

    def increment(self, name: str, n: int = 1, **labels: str) -> None:
        counter = self.counter(name, **labels)
        with self._lock:
            counter.inc(n)

    def observe(self, name: str, value: float, **labels: str) -> None:
        histogram = self.histogram(name, **labels)
        with self._lock:
            histogram.observe(value)

    def timer(self, name: str, **labels: str) -> TimerContext:
        """Create a timer context that records duration (ms) to a histogram."""
        return TimerContext(self, name, labels)

    def to_dict(self) -> dict[str, list[dict]]:
        with self._lock:
            return {
                "counters": [c.to_dict() for c in self._counters.values()],
                "histograms": [h.to_dict() for h in self._histograms.values()],
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


class TimerContext:
    """Context manager for timing operations."""

    def __init__(self, registry: MetricsRegistry, name: str, labels: dict[str, str]):
        self._registry = registry
        self._name = name
        self._labels = labels
        self._start: float = 0.0

    def __enter__(self) -> TimerContext:
        self._start = time.monotonic()
        return self

    def __exit__(self, *args: Any) -> None:
        elapsed_ms = (time.monotonic() - self._start) * 1000
        self._registry.observe(self._name, elapsed_ms, **self._labels)
