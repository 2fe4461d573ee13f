"""Application metrics (Prometheus client library).

One inventory of everything the service measures.  Modules import the
metric they own and increment/observe it at the point of action.

Counters answer "how often" (rate() in PromQL), gauges answer "how full
right now", histograms answer "how slow" (histogram_quantile()).
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

# ---------------------------------------------------------------------------
# Enrollment engine metrics
# ---------------------------------------------------------------------------

ENROLLMENTS_CREATED = Counter(
    "enrollments_created_total",
    "Enrollments successfully created",
    ["enrollment_type"],
)

ENROLLMENT_REJECTIONS = Counter(
    "enrollment_rejections_total",
    "Engine operations rejected by a business rule",
    ["kind"],  # capacity_exceeded, duplicate_enrollment, sequential_violation, ...
)

BATCH_ADMISSIONS = Counter(
    "batch_admissions_total",
    "Capacity gate admission attempts by result",
    ["result"],  # admitted | full | duplicate | released | compensated
)

PAYMENTS_RECORDED = Counter(
    "payments_recorded_total",
    "Payment ledger events by status",
    ["status"],
)

PROGRESS_MIRROR_FAILURES = Counter(
    "progress_mirror_failures_total",
    "Secondary progress record writes that failed and were skipped",
)

OPTIMISTIC_RETRIES = Counter(
    "enrollment_optimistic_retries_total",
    "Enrollment writes retried after a version conflict",
)

# ---------------------------------------------------------------------------
# Infrastructure metrics
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "notifications", "certificate_issuance", "maintenance"
)
