"""
Prometheus metrics: order transitions (API), payment event intake and processing (worker), queue depth (SQS).
"""
from prometheus_client import Counter, Gauge, generate_latest

# Lifecycle engine: one increment per command outcome
order_transitions_total = Counter(
    "order_transitions_total",
    "Order commands by outcome (applied, noop, rejected, unauthorized, conflict)",
    ["command", "outcome"],
)
order_cas_conflicts_total = Counter(
    "order_cas_conflicts_total",
    "Lost optimistic version checks (each one triggers a re-read)",
)
orders_created_total = Counter(
    "orders_created_total",
    "Orders created from checkout snapshots",
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Order notifications that could not be handed to the notification queue",
)

# Payment collaborator intake
payment_events_ingested_total = Counter(
    "payment_events_ingested_total",
    "Payment events accepted (202) for processing",
)

# Worker: processing outcomes
messages_processed_total = Counter(
    "messages_processed_total",
    "Payment events applied (or found already applied)",
)
messages_failed_total = Counter(
    "messages_failed_total",
    "Payment events that failed processing (retried or sent to DLQ)",
)
messages_dlq_total = Counter(
    "messages_dlq_total",
    "Payment events moved to DLQ",
)

# SQS queue depth (payment events queue, when using SQS)
sqs_queue_messages_waiting = Gauge(
    "sqs_queue_messages_waiting",
    "Approximate number of payment events waiting in SQS",
)
sqs_queue_messages_in_flight = Gauge(
    "sqs_queue_messages_in_flight",
    "Approximate number of payment events in flight (received but not yet deleted)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
