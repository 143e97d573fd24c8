"""
Metrics for incident processing.

Every public operation gets its own ``OperationMetrics`` handle; named
timers and gauges recorded on it are forwarded to the configured backend:

- logging (default): one structured log line per observation
- statsd: timings/gauges/counters sent to a StatsD daemon
- memory: kept in lists, for tests and CLI reports

Timer names used by the service: find_active_incident, create_incident,
associate_alert, mark_alert_associated, close_stale_incident,
batch_resolve, find_inactive_incidents, process_new_alert,
resolve_inactive_incidents.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from django.conf import settings

logger = logging.getLogger("apps.incidents.metrics")


class MetricsBackend:
    """
    Abstract metrics backend.

    Override the three emit methods to ship observations elsewhere.
    """

    def timing(self, name: str, value_ms: float, tags: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    def gauge(self, name: str, value: float, tags: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    def incr(self, name: str, tags: dict[str, Any] | None = None) -> None:
        raise NotImplementedError


class LoggingBackend(MetricsBackend):
    """Default backend: structured logging."""

    def _emit(self, kind: str, name: str, value: float | None, tags: dict[str, Any] | None):
        data = {"metric": name, "kind": kind, "value": value, **(tags or {})}
        logger.debug(f"[METRIC] {name}={value}", extra={"metric_data": data})

    def timing(self, name, value_ms, tags=None):
        self._emit("timing", name, value_ms, tags)

    def gauge(self, name, value, tags=None):
        self._emit("gauge", name, value, tags)

    def incr(self, name, tags=None):
        self._emit("counter", name, 1, tags)


class StatsdBackend(MetricsBackend):
    """StatsD backend; requires the ``statsd`` package (``statsd`` extra)."""

    def __init__(self, host: str = "localhost", port: int = 8125, prefix: str = "incidents"):
        self.host = host
        self.port = port
        self.prefix = prefix
        self._client = None

    def _get_client(self):
        if self._client is None:
            import statsd

            self._client = statsd.StatsClient(self.host, self.port, prefix=self.prefix)
        return self._client

    def _name(self, name: str, tags: dict[str, Any] | None) -> str:
        """StatsD has no tags; the operation becomes a name prefix."""
        operation = (tags or {}).get("operation")
        if not operation or operation == name:
            return name
        return f"{operation}.{name}"

    def timing(self, name, value_ms, tags=None):
        self._get_client().timing(self._name(name, tags), value_ms)

    def gauge(self, name, value, tags=None):
        self._get_client().gauge(self._name(name, tags), value)

    def incr(self, name, tags=None):
        self._get_client().incr(self._name(name, tags))


@dataclass
class InMemoryBackend(MetricsBackend):
    """Keeps every observation; handy for assertions and reports."""

    timings: list[tuple[str, float]] = field(default_factory=list)
    gauges: list[tuple[str, float]] = field(default_factory=list)
    counters: list[str] = field(default_factory=list)

    def timing(self, name, value_ms, tags=None):
        self.timings.append((name, value_ms))

    def gauge(self, name, value, tags=None):
        self.gauges.append((name, value))

    def incr(self, name, tags=None):
        self.counters.append(name)

    def timer_names(self) -> list[str]:
        return [name for name, _ in self.timings]

    def gauge_value(self, name: str) -> float | None:
        for gauge_name, value in reversed(self.gauges):
            if gauge_name == name:
                return value
        return None


def get_metrics_backend() -> MetricsBackend:
    """Get configured metrics backend."""
    backend_name = getattr(settings, "INCIDENTS_METRICS_BACKEND", "logging")

    if backend_name == "statsd":
        return StatsdBackend(
            host=getattr(settings, "STATSD_HOST", "localhost"),
            port=getattr(settings, "STATSD_PORT", 8125),
            prefix=getattr(settings, "STATSD_PREFIX", "incidents"),
        )
    if backend_name == "memory":
        return InMemoryBackend()

    return LoggingBackend()


class OperationMetrics:
    """
    Metrics handle scoped to one operation call.

    Timers live on the instance, so concurrent operations never share
    timer state.
    """

    def __init__(self, backend: MetricsBackend | None = None, tags: dict[str, Any] | None = None):
        self.backend = backend or get_metrics_backend()
        self.tags = dict(tags or {})
        self._started: dict[str, float] = {}
        self.values: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        self._started[name] = time.perf_counter()

    def end_timer(self, name: str) -> float:
        """Stop a timer and return its duration in milliseconds."""
        started = self._started.pop(name, None)
        if started is None:
            logger.warning(f"Timer {name} was never started")
            return 0.0
        duration_ms = (time.perf_counter() - started) * 1000
        self.values[name] = duration_ms
        self.backend.timing(name, duration_ms, self.tags)
        return duration_ms

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        self.start_timer(name)
        try:
            yield
        finally:
            self.end_timer(name)

    def record(self, name: str, value: float) -> None:
        self.values[name] = value
        self.backend.gauge(name, value, self.tags)

    def incr(self, name: str) -> None:
        self.values[name] = self.values.get(name, 0) + 1
        self.backend.incr(name, self.tags)

    def as_dict(self) -> dict[str, float]:
        return dict(self.values)
