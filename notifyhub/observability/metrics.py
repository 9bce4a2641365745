"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge

# Consumer metrics
NOTIFICATIONS_RECEIVED = Counter(
    "notifyhub_notifications_received_total",
    "Total notifications received from the broker",
)

NOTIFICATIONS_DISCARDED = Counter(
    "notifyhub_notifications_discarded_total",
    "Notifications rejected before delivery",
    ["reason"],
)

NOTIFICATIONS_DELIVERED = Counter(
    "notifyhub_notifications_delivered_total",
    "Notifications delivered successfully",
    ["channel"],
)

NOTIFICATIONS_RETRIED = Counter(
    "notifyhub_notifications_retried_total",
    "Notifications re-published for a delayed retry",
)

NOTIFICATIONS_FAILED = Counter(
    "notifyhub_notifications_failed_total",
    "Notifications routed to the failure sink",
)

# Publish metrics
NOTIFICATIONS_PUBLISHED = Counter(
    "notifyhub_notifications_published_total",
    "Notifications accepted by the producer",
)

PUBLISH_ERRORS = Counter(
    "notifyhub_publish_errors_total",
    "Broker publish failures",
    ["destination"],
)

# Executor metrics
EXECUTOR_CALLER_RUNS = Counter(
    "notifyhub_executor_caller_runs_total",
    "Tasks executed by the submitter because the pool queue was full",
    ["pool"],
)

EXECUTOR_QUEUE_DEPTH = Gauge(
    "notifyhub_executor_queue_depth",
    "Number of tasks waiting in an executor queue",
    ["pool"],
)
