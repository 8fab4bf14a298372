"""Prometheus metrics for the messaging pipeline."""

from prometheus_client import Counter, Histogram

DELIVERIES_TOTAL = Counter(
    "bot_notifier_deliveries_total",
    "Delivery attempts recorded in the audit log",
    ["channel", "status"],
)

RESENDS_TOTAL = Counter(
    "bot_notifier_resends_total",
    "Resend requests by outcome",
    ["outcome"],
)

INBOUND_UPDATES_TOTAL = Counter(
    "bot_notifier_inbound_updates_total",
    "Inbound webhook updates by outcome",
    ["outcome"],
)

DELIVERY_LATENCY = Histogram(
    "bot_notifier_delivery_latency_seconds",
    "Time spent in the outbound transport call",
    ["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
