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

PAYMENT_TRANSITIONS = Counter(
    "payment_transitions_total",
    "Payment ledger state transitions applied",
    ["gateway", "to_status"],
)
GATEWAY_INITIATIONS = Counter(
    "gateway_initiations_total",
    "Charge initiation attempts by outcome",
    ["gateway", "outcome"],
)
WEBHOOK_CALLBACKS = Counter(
    "gateway_callbacks_total",
    "Inbound gateway callbacks by reconciliation result",
    ["gateway", "result"],
)
ENTITLEMENT_DENIALS = Counter(
    "entitlement_denials_total",
    "Listing publish attempts denied by the entitlement engine",
    ["kind"],
)
NOTIFICATION_DELIVERIES = Counter(
    "notification_deliveries_total",
    "Notification transport attempts",
    ["channel", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
