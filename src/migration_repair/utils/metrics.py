"""Metrics collection for repair runs.

Counts clusters, tier-1 and tier-2 resolutions, patch applications,
rollbacks and generator calls, plus run and generator durations.
Metrics can be exported as a dictionary or in Prometheus text format.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from threading import Lock
from typing import Any

import structlog

log = structlog.get_logger()


class MetricType(StrEnum):
    """Types of metrics."""

    COUNTER = "counter"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """A single metric value with metadata."""

    name: str
    type: MetricType
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    help_text: str = ""


LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted(labels.items())) if labels else ()


class Counter:
    """A monotonically increasing counter.

    Example:
        counter = Counter("patches_applied", "Total patches applied")
        counter.inc()
        counter.inc(labels={"source": "pattern"})
    """

    def __init__(self, name: str, help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._values: dict[LabelKey, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: dict[str, str] | None = None) -> None:
        """Increment the counter.

        Raises:
            ValueError: If value is negative.
        """
        if value < 0:
            raise ValueError("Counter can only increase")

        with self._lock:
            self._values[_label_key(labels)] += value

    def get(self, labels: dict[str, str] | None = None) -> float:
        """Get the current value for a label set."""
        with self._lock:
            return self._values.get(_label_key(labels), 0)

    def total(self) -> float:
        """Sum across all label sets."""
        with self._lock:
            return sum(self._values.values())

    def get_all(self) -> list[MetricValue]:
        """Get all counter values with their labels."""
        with self._lock:
            return [
                MetricValue(
                    name=self.name,
                    type=MetricType.COUNTER,
                    value=value,
                    labels=dict(label_key),
                    help_text=self.help_text,
                )
                for label_key, value in self._values.items()
            ]


class Histogram:
    """Tracks a distribution of observations.

    Example:
        histogram = Histogram("run_duration_seconds", "Repair run duration")
        histogram.observe(0.5)
    """

    DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, float("inf"))

    def __init__(
        self,
        name: str,
        help_text: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> None:
        self.name = name
        self.help_text = help_text
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[LabelKey, list[float]] = defaultdict(list)
        self._lock = Lock()

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        """Record an observation."""
        with self._lock:
            self._observations[_label_key(labels)].append(value)

    def get_stats(self, labels: dict[str, str] | None = None) -> dict[str, float]:
        """Return count, sum, min, max and mean for a label set."""
        with self._lock:
            values = list(self._observations.get(_label_key(labels), []))

        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "mean": 0}

        return {
            "count": len(values),
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "mean": sum(values) / len(values),
        }

    def get_buckets(self, labels: dict[str, str] | None = None) -> dict[float, int]:
        """Return per-bucket observation counts (non-cumulative)."""
        with self._lock:
            values = list(self._observations.get(_label_key(labels), []))

        bucket_counts: dict[float, int] = dict.fromkeys(self._buckets, 0)
        for value in values:
            for bucket in self._buckets:
                if value <= bucket:
                    bucket_counts[bucket] += 1
                    break

        return bucket_counts


class MetricsRegistry:
    """Registry for all repair metrics.

    A process-wide default is available through ``get_metrics()``; the
    pipeline also accepts an explicit registry so tests stay isolated.
    """

    _instance: MetricsRegistry | None = None
    _lock = Lock()

    def __init__(self) -> None:
        self.diagnostics_received = Counter(
            "migration_repair_diagnostics_received_total",
            "Total diagnostics received for repair",
        )
        self.clusters_found = Counter(
            "migration_repair_clusters_total",
            "Total error clusters formed",
        )
        self.pattern_matches = Counter(
            "migration_repair_pattern_matches_total",
            "Clusters matched by a tier-1 rule",
        )
        self.generator_requests = Counter(
            "migration_repair_generator_requests_total",
            "Tier-2 generator requests",
        )
        self.generator_errors = Counter(
            "migration_repair_generator_errors_total",
            "Tier-2 generator failures",
        )
        self.patches_applied = Counter(
            "migration_repair_patches_applied_total",
            "Patches written to disk",
        )
        self.patches_failed = Counter(
            "migration_repair_patches_failed_total",
            "Patches that could not be applied",
        )
        self.batches_rolled_back = Counter(
            "migration_repair_batches_rolled_back_total",
            "Patch batches rolled back after a failure",
        )
        self.rollback_failures = Counter(
            "migration_repair_rollback_failures_total",
            "Patches that could not be reverted during rollback",
        )

        self.run_duration = Histogram(
            "migration_repair_run_duration_seconds",
            "Repair run duration in seconds",
        )
        self.generator_duration = Histogram(
            "migration_repair_generator_duration_seconds",
            "Generator request duration in seconds",
        )

        self._start_time = time.time()

    @classmethod
    def get_instance(cls) -> MetricsRegistry:
        """Get the process-wide registry instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def _counters(self) -> list[Counter]:
        return [
            self.diagnostics_received,
            self.clusters_found,
            self.pattern_matches,
            self.generator_requests,
            self.generator_errors,
            self.patches_applied,
            self.patches_failed,
            self.batches_rolled_back,
            self.rollback_failures,
        ]

    def get_uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def get_all_metrics(self) -> dict[str, Any]:
        """Get all metrics as a dictionary."""
        return {
            "uptime_seconds": self.get_uptime_seconds(),
            "diagnostics": {
                "received": self.diagnostics_received.total(),
                "clusters": self.clusters_found.total(),
            },
            "tier1": {
                "matches": self.pattern_matches.total(),
            },
            "tier2": {
                "requests": self.generator_requests.total(),
                "errors": self.generator_errors.total(),
                "duration_stats": self.generator_duration.get_stats(),
            },
            "patches": {
                "applied": self.patches_applied.total(),
                "failed": self.patches_failed.total(),
                "batches_rolled_back": self.batches_rolled_back.total(),
                "rollback_failures": self.rollback_failures.total(),
            },
            "runs": {
                "duration_stats": self.run_duration.get_stats(),
            },
        }

    def to_prometheus_format(self) -> str:
        """Export counters in Prometheus text format."""
        lines: list[str] = []

        for counter in self._counters():
            if counter.help_text:
                lines.append(f"# HELP {counter.name} {counter.help_text}")
            lines.append(f"# TYPE {counter.name} counter")
            for metric in counter.get_all():
                if metric.labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in metric.labels.items())
                    lines.append(f"{counter.name}{{{label_str}}} {metric.value}")
                else:
                    lines.append(f"{counter.name} {metric.value}")

        return "\n".join(lines)


def get_metrics() -> MetricsRegistry:
    """Get the process-wide metrics registry."""
    return MetricsRegistry.get_instance()


class Timer:
    """Context manager for timing operations.

    Example:
        with Timer(metrics.run_duration):
            summary = await pipeline.run(diagnostics)
    """

    def __init__(
        self,
        histogram: Histogram,
        labels: dict[str, str] | None = None,
    ) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start: float | None = None
        self.elapsed: float = 0.0

    def __enter__(self) -> Timer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        if self._start is not None:
            self.elapsed = time.perf_counter() - self._start
            self._histogram.observe(self.elapsed, labels=self._labels)
