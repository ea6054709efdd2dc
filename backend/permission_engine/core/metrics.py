# Centralized Prometheus metrics for the permission engine. Cache
# effectiveness, resolution latency and invalidation fan-out are the
# signals that tell us whether users are seeing stale permissions.

from prometheus_client import Counter, Histogram


CACHE_HIT_TOTAL = Counter(
    "permission_cache_hit_total",
    "Cache hits grouped by cache name",
    ["cache"],
)
CACHE_MISS_TOTAL = Counter(
    "permission_cache_miss_total",
    "Cache misses grouped by cache name",
    ["cache"],
)
CACHE_SET_TOTAL = Counter(
    "permission_cache_set_total",
    "Cache writes grouped by cache name",
    ["cache"],
)
CACHE_PAYLOAD_BYTES = Histogram(
    "permission_cache_payload_bytes",
    "Serialized cache payload size in bytes",
    ["cache"],
    buckets=[64, 256, 1024, 4096, 16384, 65536, 262144],
)
CACHE_ERROR_TOTAL = Counter(
    "permission_cache_error_total",
    "Cache store failures that were absorbed (fail-open)",
    ["operation"],
)

RESOLUTION_DURATION_MS = Histogram(
    "permission_resolution_duration_ms",
    "Permission resolution latency in milliseconds",
    ["source"],
    buckets=[1, 2, 5, 10, 25, 50, 100, 250, 500, 1000, 2500],
)
RESOLUTION_TOTAL = Counter(
    "permission_resolution_total",
    "Permission resolutions grouped by source and outcome",
    ["source", "outcome"],
)

INVALIDATION_TOTAL = Counter(
    "permission_invalidation_total",
    "Resolved permission cache entries invalidated, by mutation reason",
    ["reason"],
)
INVALIDATION_FAILURE_TOTAL = Counter(
    "permission_invalidation_failure_total",
    "Best-effort invalidations that failed",
    ["reason"],
)

JOB_RUN_TOTAL = Counter(
    "permission_job_run_total",
    "Background job runs",
    ["job_name", "status"],
)


def _label(value: str | None, fallback: str = "unknown") -> str:
    if not value:
        return fallback
    return str(value)


def record_cache_hit(cache_name: str) -> None:
    CACHE_HIT_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_miss(cache_name: str) -> None:
    CACHE_MISS_TOTAL.labels(cache=_label(cache_name, "default")).inc()


def record_cache_set(cache_name: str, payload_bytes: int | None = None) -> None:
    CACHE_SET_TOTAL.labels(cache=_label(cache_name, "default")).inc()
    if payload_bytes is not None:
        CACHE_PAYLOAD_BYTES.labels(cache=_label(cache_name, "default")).observe(payload_bytes)


def record_cache_error(operation: str) -> None:
    CACHE_ERROR_TOTAL.labels(operation=_label(operation)).inc()


def record_resolution(*, source: str, outcome: str, duration_ms: float) -> None:
    RESOLUTION_TOTAL.labels(source=_label(source), outcome=_label(outcome)).inc()
    RESOLUTION_DURATION_MS.labels(source=_label(source)).observe(duration_ms)


def record_invalidation(reason: str, count: int = 1) -> None:
    if count > 0:
        INVALIDATION_TOTAL.labels(reason=_label(reason)).inc(count)


def record_invalidation_failure(reason: str) -> None:
    INVALIDATION_FAILURE_TOTAL.labels(reason=_label(reason)).inc()


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUN_TOTAL.labels(
        job_name=_label(job_name),
        status="success" if success else "failure",
    ).inc()
