"""
cohort_config.tier0_core.metrics
─────────────────────────────────
Counters and gauges with standard naming and labels, plus the engine's own
instruments. Exports via a Prometheus /metrics endpoint.

Minimal stack: prometheus-client
Configure via: COHORT_METRICS_PORT (default: 8001)
"""
from __future__ import annotations

import os
from typing import Callable

from prometheus_client import Counter, Gauge, start_http_server

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = os.getenv("APP_NAME", "cohort-config")
_ENV = os.getenv("APP_ENV", "development")
_DEFAULT_LABEL_VALUES = {"service": _SERVICE, "env": _ENV}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard labels.

    Usage:
        writes_total = counter("cohort_writes_total", "Persistence writes", ["kind"])
        writes_total(kind="eligibility").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _counter


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a gauge with standard labels.

    Usage:
        active_sessions = gauge("cohort_active_sessions", "Active player sessions")
        active_sessions().inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    g = Gauge(name, description, all_labels)

    def _gauge(**extra_labels: str) -> Gauge:
        return g.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _gauge


def start_metrics_server(port: int | None = None) -> None:
    """
    Start the Prometheus HTTP metrics server on a dedicated port.
    Call once at application startup.
    """
    port = port or int(os.getenv("COHORT_METRICS_PORT", "8001"))
    start_http_server(port)


# ── Engine instruments ────────────────────────────────────────────────────────
# Created once at import; shared by every ConfigService in the process.

eligibility_settled = counter(
    "cohort_eligibility_settled_total",
    "Eligibility snapshots that settled, by per-key outcome",
    ["outcome"],
)
eligibility_pending = counter(
    "cohort_eligibility_pending_total",
    "Eligibility passes that ended pending",
)
resolutions = counter(
    "cohort_resolutions_total",
    "Resolution passes run across all sessions",
)
persistence_writes = counter(
    "cohort_persistence_writes_total",
    "Deferred persistence writes, by kind and status",
    ["kind", "status"],
)
active_sessions = gauge(
    "cohort_active_sessions",
    "Player sessions currently active",
)


__all__ = [
    "counter",
    "gauge",
    "start_metrics_server",
    "eligibility_settled",
    "eligibility_pending",
    "resolutions",
    "persistence_writes",
    "active_sessions",
]
