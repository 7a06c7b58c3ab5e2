"""Prometheus counters and gauges for update delivery."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge

# Custom registry to avoid clashing with default process collectors in tests
REGISTRY = CollectorRegistry()

# Envelopes written to the per-user update log.
UPDATES_APPENDED_TOTAL = Counter(
    "updates_appended_total",
    "Envelopes appended to the update log",
    ["event_type"],
    registry=REGISTRY,
)

UPDATES_APPEND_FAILURES_TOTAL = Counter(
    "updates_append_failures_total",
    "Appends that raised StoreUnavailable",
    ["reason"],
    registry=REGISTRY,
)

# Seqno collisions that forced a fresh transaction.
UPDATES_APPEND_RETRIES_TOTAL = Counter(
    "updates_append_retries_total",
    "Append attempts retried after a (user_id, seqno) conflict",
    registry=REGISTRY,
)

UPDATES_TRIMMED_ROWS_TOTAL = Counter(
    "updates_trimmed_rows_total",
    "Rows pruned by update log retention",
    registry=REGISTRY,
)

# path is "durable" or "ephemeral".
UPDATES_NOTICES_PUBLISHED_TOTAL = Counter(
    "updates_notices_published_total",
    "Pub/sub messages published",
    ["path"],
    registry=REGISTRY,
)

UPDATES_NOTICES_FAILED_TOTAL = Counter(
    "updates_notices_failed_total",
    "Pub/sub publishes that failed",
    ["path"],
    registry=REGISTRY,
)

UPDATES_RECIPIENTS_SKIPPED_TOTAL = Counter(
    "updates_recipients_skipped_total",
    "Recipients rejected by the recipient filter",
    ["event_type"],
    registry=REGISTRY,
)

UPDATES_STREAM_CONNECTIONS = Gauge(
    "updates_stream_connections",
    "Live update streams in this process",
    registry=REGISTRY,
)
