"""Prometheus instruments for ledger submissions, completion waits and cron runs."""

from __future__ import annotations

import prometheus_client

_METRICS_REGISTRY: prometheus_client.CollectorRegistry | None = prometheus_client.CollectorRegistry()


def metrics_registry() -> prometheus_client.CollectorRegistry:
    global _METRICS_REGISTRY
    if _METRICS_REGISTRY is None:
        _METRICS_REGISTRY = prometheus_client.CollectorRegistry()
    return _METRICS_REGISTRY


LEDGER_SUBMISSIONS = prometheus_client.Counter(
    "veiledcasts_ledger_submissions_total",
    "Ledger instructions submitted",
    ["instruction", "outcome"],
    registry=metrics_registry(),
)
COMPLETION_WAITS = prometheus_client.Counter(
    "veiledcasts_completion_waits_total",
    "Completion waits by how they resolved",
    ["callback", "outcome"],
    registry=metrics_registry(),
)
PROJECTION_FAILURES = prometheus_client.Counter(
    "veiledcasts_projection_failures_total",
    "Relational writes that failed after a successful ledger action",
    ["operation"],
    registry=metrics_registry(),
)
CRON_RUNS = prometheus_client.Counter(
    "veiledcasts_cron_runs_total",
    "Scheduled task invocations",
    ["task", "http_status"],
    registry=metrics_registry(),
)
CRON_SECONDS = prometheus_client.Histogram(
    "veiledcasts_cron_seconds",
    "Scheduled task duration (seconds)",
    ["task"],
    registry=metrics_registry(),
)


def render_latest() -> bytes:
    return prometheus_client.generate_latest(metrics_registry())


CONTENT_TYPE_LATEST = prometheus_client.CONTENT_TYPE_LATEST

__all__ = [
    "COMPLETION_WAITS",
    "CONTENT_TYPE_LATEST",
    "CRON_RUNS",
    "CRON_SECONDS",
    "LEDGER_SUBMISSIONS",
    "PROJECTION_FAILURES",
    "metrics_registry",
    "render_latest",
]
