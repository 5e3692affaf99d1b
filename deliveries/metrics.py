"""
Prometheus metrics: order lifecycle outcomes and notification fan-out.
"""
from prometheus_client import Counter, Gauge, generate_latest

# Lifecycle
orders_created_total = Counter(
    "orders_created_total",
    "Total delivery orders created",
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total committed order status transitions",
    ["from_status", "to_status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total status changes rejected as invalid (including lost races)",
    ["current_status", "target_status"],
)

# Notifications
notifications_published_total = Counter(
    "notifications_published_total",
    "Total change notifications published",
    ["kind"],
)
notifications_dropped_total = Counter(
    "notifications_dropped_total",
    "Total notifications not delivered to a subscriber (buffer full or relay failure)",
)
notification_subscribers = Gauge(
    "notification_subscribers",
    "Currently connected notification subscribers in this process",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
