from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

UPDATE_CHECKS = Counter(
    "release_engine_update_checks_total",
    "Update checks by outcome",
    ["outcome"],
)
STATUS_REPORTS = Counter(
    "release_engine_status_reports_total",
    "Device status reports by status and outcome",
    ["status", "outcome"],
)
PACKAGES_RELEASED = Counter(
    "release_engine_packages_released_total",
    "Packages released by method",
    ["release_method"],
)
LABEL_CONFLICTS = Counter(
    "release_engine_label_conflicts_total",
    "Label allocations that lost a concurrent race",
)
AUDIT_WRITE_FAILURES = Counter(
    "release_engine_audit_write_failures_total",
    "Audit log entries that could not be written",
    ["entity", "action"],
)
REPORTED_ERRORS = Counter(
    "release_engine_reported_errors_total",
    "Errors handed to the error collector",
    ["source"],
)
