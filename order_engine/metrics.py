"""
Prometheus metrics: transitions (committed, rejected, automatic), order creation,
event publication outcomes and stock units moved by state hooks.
"""
from prometheus_client import Counter

order_transitions_total = Counter(
    "order_transitions_total",
    "Total committed order status transitions",
    ["order_type", "from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total status change requests rejected, by error kind",
    ["kind"],
)
order_auto_transitions_total = Counter(
    "order_auto_transitions_total",
    "Total automatic follow-on transitions (e.g. APPROVED -> FINISHED on full stock coverage)",
    ["order_type", "to_status"],
)
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
    ["order_type"],
)

lifecycle_events_published_total = Counter(
    "lifecycle_events_published_total",
    "Total lifecycle events handed to the event sink",
    ["event_type"],
)
lifecycle_events_failed_total = Counter(
    "lifecycle_events_failed_total",
    "Total lifecycle events the sink failed to accept (error or timeout); transition unaffected",
    ["event_type"],
)

# movement: reserve | release | unreserve | increment
stock_units_moved_total = Counter(
    "stock_units_moved_total",
    "Total stock units moved by order state hooks",
    ["movement"],
)


# Event relay worker
events_relayed_total = Counter("events_relayed_total", "Total lifecycle events delivered to subscribers")
events_dropped_total = Counter("events_dropped_total", "Total queue messages dropped as malformed")
