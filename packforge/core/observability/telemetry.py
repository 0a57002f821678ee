"""
Telemetry channel — events and dependency calls emitted by a run.

Pipelines report two kinds of signal:

    track_event("pipeline.completed", {...})
    track_dependency("notarytool", duration, success, {...})

Sinks:
    NullTelemetry       — discard everything (default)
    LoggingTelemetry    — forward to a logger at INFO/DEBUG
    RecordingTelemetry  — keep everything in memory (tests, SDK callers)
    MetricsTelemetry    — aggregate into a MetricsRegistry
    CompositeTelemetry  — fan out to several sinks
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Mapping

from packforge.core.observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


class TelemetryChannel(ABC):
    @abstractmethod
    def track_event(self, name: str, properties: Mapping[str, str] | None = None) -> None:
        ...

    @abstractmethod
    def track_dependency(
        self,
        name: str,
        duration: timedelta,
        success: bool,
        properties: Mapping[str, str] | None = None,
    ) -> None:
        ...


class NullTelemetry(TelemetryChannel):
    def track_event(self, name, properties=None) -> None:
        pass

    def track_dependency(self, name, duration, success, properties=None) -> None:
        pass


class LoggingTelemetry(TelemetryChannel):
    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def track_event(self, name, properties=None) -> None:
        self._log.info("event %s %s", name, dict(properties or {}))

    def track_dependency(self, name, duration, success, properties=None) -> None:
        self._log.debug(
            "dependency %s %s in %.0fms %s",
            name,
            "ok" if success else "failed",
            duration.total_seconds() * 1000,
            dict(properties or {}),
        )


@dataclass(frozen=True)
class TrackedEvent:
    name: str
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TrackedDependency:
    name: str
    duration: timedelta
    success: bool
    properties: dict[str, str] = field(default_factory=dict)


class RecordingTelemetry(TelemetryChannel):
    """Keeps every signal in memory, in emission order."""

    def __init__(self) -> None:
        self._events: list[TrackedEvent] = []
        self._dependencies: list[TrackedDependency] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> list[TrackedEvent]:
        with self._lock:
            return list(self._events)

    @property
    def dependencies(self) -> list[TrackedDependency]:
        with self._lock:
            return list(self._dependencies)

    def named(self, name: str) -> list[TrackedEvent]:
        return [e for e in self.events if e.name == name]

    def track_event(self, name, properties=None) -> None:
        with self._lock:
            self._events.append(TrackedEvent(name, dict(properties or {})))

    def track_dependency(self, name, duration, success, properties=None) -> None:
        with self._lock:
            self._dependencies.append(
                TrackedDependency(name, duration, success, dict(properties or {}))
            )


class MetricsTelemetry(TelemetryChannel):
    """Aggregates telemetry into counters and duration histograms."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()

    def track_event(self, name, properties=None) -> None:
        self.registry.increment(f"event.{name}")

    def track_dependency(self, name, duration, success, properties=None) -> None:
        outcome = "ok" if success else "failed"
        self.registry.increment(f"dependency.{name}", outcome=outcome)
        self.registry.observe(
            f"dependency.{name}.duration_ms", duration.total_seconds() * 1000
        )


class CompositeTelemetry(TelemetryChannel):
    def __init__(self, channels: Iterable[TelemetryChannel]):
        self._channels = list(channels)

    def track_event(self, name, properties=None) -> None:
        for channel in self._channels:
            channel.track_event(name, properties)

    def track_dependency(self, name, duration, success, properties=None) -> None:
        for channel in self._channels:
            channel.track_dependency(name, duration, success, properties)
