from prometheus_client import Counter, Gauge, Histogram

WEBHOOK_REQUESTS_TOTAL = Counter(
    "telehook_webhook_requests_total",
    "Total webhook requests processed",
    ["result"],
)

PROCESSING_DURATION = Histogram(
    "telehook_processing_duration_seconds",
    "Webhook pipeline duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

DELIVERY_FAILURES_TOTAL = Counter(
    "telehook_delivery_failures_total",
    "Total failed deliveries to the Telegram API",
    ["kind"],
)

CAPTURE_TRANSITIONS_TOTAL = Counter(
    "telehook_capture_transitions_total",
    "Capture session status transitions",
    ["status"],
)

CAPTURE_SESSIONS_ACTIVE = Gauge(
    "telehook_capture_sessions",
    "Capture sessions currently held in memory",
)
