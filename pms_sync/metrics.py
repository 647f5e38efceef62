"""
Prometheus metrics for sync runs, outbound PMS API calls and webhook handling.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.
Labels use the adapter code (e.g. "hostaway", "calry") rather than connection
ids to keep cardinality bounded.

Example:
    >>> from pms_sync.metrics import sync_duration, records_synced
    >>> with sync_duration.labels(adapter="smoobu", sync_type="full").time():
    ...     stats = adapter.full_sync()
    ...     records_synced.labels(adapter="smoobu", entity_type="reservations").inc(12)
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Sync Metrics
# =============================================================================

sync_runs = Counter(
    "pms_sync_runs_total",
    "Total number of sync attempts by outcome",
    ["adapter", "sync_type", "status"],
)
"""
Counter for sync attempts.

Labels:
    adapter: Adapter code resolved for the connection
    sync_type: full or incremental
    status: success, partial_success, failed or skipped
"""

sync_duration = Histogram(
    "pms_sync_duration_seconds",
    "Duration of sync attempts in seconds",
    ["adapter", "sync_type"],
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, float("inf")),
)
"""Histogram for sync attempt duration."""

records_synced = Counter(
    "pms_sync_records_synced_total",
    "Total number of canonical records upserted",
    ["adapter", "entity_type"],
)
"""
Counter for upserted records.

Labels:
    adapter: Adapter code
    entity_type: properties, room_types, availability, rates or reservations
"""

# =============================================================================
# API Metrics
# =============================================================================

api_requests = Counter(
    "pms_sync_api_requests_total",
    "Total outbound PMS API requests",
    ["adapter", "status"],
)
"""
Counter for outbound API requests.

Labels:
    adapter: Adapter code
    status: HTTP status code, or the error code when no response was received
"""

api_latency = Histogram(
    "pms_sync_api_latency_seconds",
    "Outbound PMS API request latency in seconds",
    ["adapter"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
)
"""Histogram for outbound API latency."""

rate_limit_waits = Counter(
    "pms_sync_rate_limit_waits_total",
    "Number of times a request waited for a rate limiter slot",
    ["adapter"],
)
"""Counter for local throttle waits (not upstream 429s)."""

token_refreshes = Counter(
    "pms_sync_token_refreshes_total",
    "Total number of access token refresh operations",
    ["adapter"],
)
"""Counter for token refreshes performed by auth strategies."""

# =============================================================================
# Webhook Metrics
# =============================================================================

webhook_events = Counter(
    "pms_sync_webhook_events_total",
    "Inbound webhook events by normalized type and processing outcome",
    ["adapter", "event", "status"],
)
"""
Counter for webhook events.

Labels:
    adapter: Adapter code
    event: Normalized event name (reservation.created, availability.updated, ...)
    status: processed, duplicate, rejected, retry_scheduled or failed
"""

# =============================================================================
# System Metrics
# =============================================================================

connections_in_error = Gauge(
    "pms_sync_connections_in_error",
    "Connections excluded from scheduling after repeated sync failures",
)
"""Gauge refreshed on every scheduling pass."""
