"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning module
imports it and increments or observes at the point of action.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)

# ---------------------------------------------------------------------------
# Entitlement ledger
# ---------------------------------------------------------------------------

LICENSE_OPERATIONS = Counter(
    "license_operations_total",
    "License lifecycle operations",
    ["operation"],  # created|activated|cancelled
)

SEAT_ASSIGNMENTS = Counter(
    "seat_assignments_total",
    "Access grants created or revoked",
    ["result"],  # granted|revoked
)

LICENSES_EXPIRED = Counter(
    "licenses_expired_total",
    "Licenses moved to EXPIRED by the sweep",
)

# ---------------------------------------------------------------------------
# Progress tracker / completion cascade
# ---------------------------------------------------------------------------

ENROLLMENT_COMPLETIONS = Counter(
    "enrollment_completions_total",
    "Enrollments that transitioned ACTIVE -> COMPLETED",
)

PROGRESS_WRITE_CONFLICTS = Counter(
    "progress_write_conflicts_total",
    "Enrollment writes retried after a concurrent update",
)

CASCADE_FAILURES = Counter(
    "cascade_failures_total",
    "Completion side effects that failed and were swallowed",
    ["step"],  # notification|certificate
)

NOTIFICATIONS_ENQUEUED = Counter(
    "notifications_enqueued_total",
    "Notification facts handed to the delivery queue",
    ["type"],
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
