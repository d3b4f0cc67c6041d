from prometheus_client import Counter, Gauge, Histogram

AUTH_OPERATIONS = Counter(
    "auth_operations_total",
    "Authentication operations",
    ["operation", "status"],
)

AUTH_OPERATION_SECONDS = Histogram(
    "auth_operation_duration_seconds",
    "Authentication operation latency",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

RATE_LIMIT_REJECTIONS = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["category"],
)

LOCKOUT_ANNOTATIONS = Counter(
    "login_lockout_responses_total",
    "Failed logins answered with the temporarily-locked annotation",
)

VERIFICATION_CACHE_EVENTS = Counter(
    "verification_cache_events_total",
    "Verification cache hits, misses, sets, deletes and evictions",
    ["event"],
)

VERIFICATION_CACHE_SIZE = Gauge(
    "verification_cache_entries",
    "Entries currently held by the verification cache",
)

TOKEN_CLEANUP_RUNS = Counter(
    "token_cleanup_runs_total",
    "Session sweeper ticks",
    ["result"],
)

TOKEN_CLEANUP_DELETED = Counter(
    "token_cleanup_deleted_total",
    "Session rows removed by the sweeper",
    ["reason"],
)

EVENTS_PUBLISHED = Counter(
    "events_published_total",
    "Outbound event delivery outcomes",
    ["event_type", "result"],
)


def record_operation(operation: str, status: str) -> None:
    """Count one outcome of an authentication operation."""
    AUTH_OPERATIONS.labels(operation=operation, status=status).inc()


def record_rate_limit_rejection(category: str) -> None:
    RATE_LIMIT_REJECTIONS.labels(category=category).inc()


def record_cache_event(event: str) -> None:
    VERIFICATION_CACHE_EVENTS.labels(event=event).inc()


__all__ = [
    "AUTH_OPERATIONS",
    "AUTH_OPERATION_SECONDS",
    "RATE_LIMIT_REJECTIONS",
    "LOCKOUT_ANNOTATIONS",
    "VERIFICATION_CACHE_EVENTS",
    "VERIFICATION_CACHE_SIZE",
    "TOKEN_CLEANUP_RUNS",
    "TOKEN_CLEANUP_DELETED",
    "EVENTS_PUBLISHED",
    "record_operation",
    "record_rate_limit_rejection",
    "record_cache_event",
]
