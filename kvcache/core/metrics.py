"""Prometheus metrics for the cache engine.

Labels stay low-cardinality: never put cache keys in a label.
"""

from __future__ import annotations

from prometheus_client import Counter

LOOKUPS_TOTAL = Counter(
    "kvcache_lookups_total",
    "Cache reads by the layer that answered them.",
    labelnames=("source",),  # fast, local, durable, miss, expired
)

FAST_STORE_ERRORS_TOTAL = Counter(
    "kvcache_fast_store_errors_total",
    "Fast store calls that failed or timed out and were degraded to a miss.",
    labelnames=("operation",),
)

SWEEP_RUNS_TOTAL = Counter(
    "kvcache_sweep_runs_total",
    "Expiration sweep runs by outcome.",
    labelnames=("outcome",),  # success, error
)

SWEPT_ENTRIES_TOTAL = Counter(
    "kvcache_swept_entries_total",
    "Expired entries removed by the sweep.",
)


def record_lookup(source: str) -> None:
    LOOKUPS_TOTAL.labels(source=source).inc()


def record_fast_store_error(operation: str) -> None:
    FAST_STORE_ERRORS_TOTAL.labels(operation=operation).inc()


def record_sweep(removed: int) -> None:
    SWEEP_RUNS_TOTAL.labels(outcome="success").inc()
    if removed:
        SWEPT_ENTRIES_TOTAL.inc(removed)


def record_sweep_failure() -> None:
    SWEEP_RUNS_TOTAL.labels(outcome="error").inc()


__all__ = [
    "FAST_STORE_ERRORS_TOTAL",
    "LOOKUPS_TOTAL",
    "SWEEP_RUNS_TOTAL",
    "SWEPT_ENTRIES_TOTAL",
    "record_fast_store_error",
    "record_lookup",
    "record_sweep",
    "record_sweep_failure",
]
