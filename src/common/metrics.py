"""Prometheus metrics shared across the recommendation pipeline.

Counters are process-wide (the prometheus registry is global); the
per-engine statistics served to admins live in ``EngineState`` instead.
"""
from __future__ import annotations

from prometheus_client import Counter, Histogram

from common.structured_logging import SERVICE_NAME

# ---------------------------------------------------------------------------
# Metric definitions (add new ones here)
# ---------------------------------------------------------------------------

EXTERNAL_CALLS_TOTAL = Counter(
    "shelfrec_external_calls_total",
    "Calls to external services by outcome",
    ["service", "external", "outcome"],
)

CACHE_LOOKUPS_TOTAL = Counter(
    "shelfrec_cache_lookups_total",
    "Result-cache lookups",
    ["service", "result"],  # hit|miss|expired
)

REQUESTS_TOTAL = Counter(
    "shelfrec_requests_total",
    "Recommendation requests by outcome",
    ["service", "outcome"],  # success|cached|empty|error
)

PIPELINE_LATENCY = Histogram(
    "shelfrec_pipeline_duration_seconds",
    "End-to-end latency of an uncached recommendation run",
    ["service"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)


def record_external_call(external: str, outcome: str) -> None:
    EXTERNAL_CALLS_TOTAL.labels(SERVICE_NAME, external, outcome).inc()


def record_cache_lookup(result: str) -> None:
    CACHE_LOOKUPS_TOTAL.labels(SERVICE_NAME, result).inc()


def record_request(outcome: str) -> None:
    REQUESTS_TOTAL.labels(SERVICE_NAME, outcome).inc()


__all__ = [
    "EXTERNAL_CALLS_TOTAL",
    "CACHE_LOOKUPS_TOTAL",
    "REQUESTS_TOTAL",
    "PIPELINE_LATENCY",
    "record_external_call",
    "record_cache_lookup",
    "record_request",
]
