"""Webhook monitoring: counters, latency and success rate"""
import logging
import threading
from collections import defaultdict
from typing import Dict, Optional, Protocol, Tuple

from payhook.core.metrics import (
    logging_failures_counter,
    side_effects_counter,
    webhook_events_counter,
    webhook_failures_counter,
    webhook_processing_histogram,
)

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    """Destination for monitor counters"""

    def increment(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        ...

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        ...


class PrometheusMetricsSink:
    """Forwards monitor counters to the process-wide Prometheus registry"""

    _counters = {
        "events": webhook_events_counter,
        "failures": webhook_failures_counter,
        "side_effects": side_effects_counter,
        "logging_failures": logging_failures_counter,
    }
    _histograms = {
        "processing_seconds": webhook_processing_histogram,
    }

    def increment(self, name, labels=None, value=1):
        counter = self._counters.get(name)
        if counter is None:
            logger.debug(f"No Prometheus counter registered for '{name}'")
            return
        (counter.labels(**labels) if labels else counter).inc(value)

    def observe(self, name, value, labels=None):
        histogram = self._histograms.get(name)
        if histogram is None:
            logger.debug(f"No Prometheus histogram registered for '{name}'")
            return
        (histogram.labels(**labels) if labels else histogram).observe(value)


class InMemoryMetricsSink:
    """Keeps counters in memory. Used by tests and local tooling."""

    def __init__(self):
        self._lock = threading.Lock()
        self.counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = defaultdict(float)
        self.observations: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], list] = defaultdict(list)

    @staticmethod
    def _key(name, labels):
        return name, tuple(sorted((labels or {}).items()))

    def increment(self, name, labels=None, value=1):
        with self._lock:
            self.counters[self._key(name, labels)] += value

    def observe(self, name, value, labels=None):
        with self._lock:
            self.observations[self._key(name, labels)].append(value)

    def count(self, name: str, **labels) -> float:
        with self._lock:
            return self.counters.get(self._key(name, labels), 0)


def _empty_type_stats() -> dict:
    return {"total": 0, "success": 0, "failed": 0, "duplicates": 0, "total_ms": 0.0}


class WebhookMonitor:
    """Aggregates delivery outcomes per event type and forwards them to a MetricsSink"""

    def __init__(self, sink: Optional[MetricsSink] = None):
        self.sink = sink if sink is not None else PrometheusMetricsSink()
        self._lock = threading.Lock()
        self._by_type: Dict[str, dict] = defaultdict(_empty_type_stats)
        self._failures_by_reason: Dict[str, int] = defaultdict(int)
        self._side_effects: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._rejected = 0
        self._logging_failures = 0

    def record_received(self, event_type: str) -> None:
        with self._lock:
            self._by_type[event_type]["total"] += 1

    def record_success(self, event_type: str, duration_ms: float) -> None:
        with self._lock:
            stats = self._by_type[event_type]
            stats["success"] += 1
            stats["total_ms"] += duration_ms
        self.sink.increment("events", {"event_type": event_type, "outcome": "success"})
        self.sink.observe("processing_seconds", duration_ms / 1000, {"event_type": event_type})

    def record_duplicate(self, event_type: str) -> None:
        with self._lock:
            self._by_type[event_type]["duplicates"] += 1
        self.sink.increment("events", {"event_type": event_type, "outcome": "duplicate"})

    def record_failure(self, event_type: str, reason: str, duration_ms: Optional[float] = None) -> None:
        with self._lock:
            stats = self._by_type[event_type]
            stats["failed"] += 1
            if duration_ms is not None:
                stats["total_ms"] += duration_ms
            self._failures_by_reason[reason] += 1
        self.sink.increment("events", {"event_type": event_type, "outcome": "failure"})
        self.sink.increment("failures", {"reason": reason})
        if duration_ms is not None:
            self.sink.observe("processing_seconds", duration_ms / 1000, {"event_type": event_type})

    def record_rejected(self, reason: str) -> None:
        """Delivery refused before an event could be identified (bad signature, bad body)"""
        with self._lock:
            self._rejected += 1
            self._failures_by_reason[reason] += 1
        self.sink.increment("failures", {"reason": reason})

    def record_side_effect(self, step: str, outcome: str) -> None:
        with self._lock:
            self._side_effects[step][outcome] += 1
        self.sink.increment("side_effects", {"step": step, "outcome": outcome})

    def record_logging_failure(self, operation: str) -> None:
        with self._lock:
            self._logging_failures += 1
        logger.warning(f"Processing log write failed: {operation}")
        self.sink.increment("logging_failures")

    def summary(self) -> dict:
        """Snapshot of everything recorded since start (or the last reset)"""
        with self._lock:
            by_type = {}
            total = success = failed = duplicates = 0
            total_ms = 0.0
            for event_type, stats in self._by_type.items():
                completed = stats["success"] + stats["failed"]
                by_type[event_type] = {
                    "total": stats["total"],
                    "success": stats["success"],
                    "failed": stats["failed"],
                    "duplicates": stats["duplicates"],
                    "average_processing_ms": round(stats["total_ms"] / completed, 2) if completed else 0.0,
                }
                total += stats["total"]
                success += stats["success"]
                failed += stats["failed"]
                duplicates += stats["duplicates"]
                total_ms += stats["total_ms"]

            completed = success + failed
            return {
                "total_events": total,
                "successful_events": success,
                "failed_events": failed,
                "duplicate_events": duplicates,
                "rejected_requests": self._rejected,
                "logging_failures": self._logging_failures,
                "success_rate": round(success / completed * 100, 2) if completed else 100.0,
                "average_processing_ms": round(total_ms / completed, 2) if completed else 0.0,
                "events_by_type": by_type,
                "failures_by_reason": dict(self._failures_by_reason),
                "side_effects": {step: dict(outcomes) for step, outcomes in self._side_effects.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._by_type.clear()
            self._failures_by_reason.clear()
            self._side_effects.clear()
            self._rejected = 0
            self._logging_failures = 0


# Process-wide monitor backing /api/webhooks/stats
webhook_monitor = WebhookMonitor()
