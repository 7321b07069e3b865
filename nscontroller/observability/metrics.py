"""Prometheus metrics for the reconciliation engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

reconcile_total = Counter(
    "nscontroller_reconcile_total",
    "Reconcile passes by outcome",
    ["controller", "result"],
)

reconcile_duration_seconds = Histogram(
    "nscontroller_reconcile_duration_seconds",
    "Wall time of a single reconcile pass",
    ["controller"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

queue_depth = Gauge(
    "nscontroller_queue_depth",
    "Namespace keys waiting to be reconciled",
    ["controller"],
)

queue_retries_total = Counter(
    "nscontroller_queue_retries_total",
    "Keys re-queued with backoff after a failed pass",
    ["controller"],
)

api_calls_total = Counter(
    "nscontroller_api_calls_total",
    "Write calls issued against the cluster API",
    ["verb", "kind", "result"],
)

watch_restarts_total = Counter(
    "nscontroller_watch_restarts_total",
    "Watch streams re-established after expiry or error",
    ["kind"],
)
