"""Prometheus metrics for the fan-out pipeline.

All collectors live in the default registry and are exposed by the
``/metrics`` route of the status API.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

cycles_total = Counter(
    "kubeban_cycles_total",
    "Fan-out cycles processed, by outcome.",
    ["outcome"],
)

executions_total = Counter(
    "kubeban_executions_total",
    "Remote exec sessions completed, by success.",
    ["success"],
)

cycle_duration_seconds = Histogram(
    "kubeban_cycle_duration_seconds",
    "Wall-clock duration of a fan-out cycle.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)

fleet_targets = Gauge(
    "kubeban_fleet_targets",
    "Ready cache containers targeted by the latest cycle.",
)

reports_total = Counter(
    "kubeban_reports_total",
    "Cycle reports delivered to report sinks, by sink and success.",
    ["sink", "success"],
)
