from prometheus_client import Counter

miles_allocation_total = Counter(
    "miles_allocation_total", "Billing-period allocations by outcome", ["result"]
)
miles_granted_total = Counter("miles_granted_total", "Service Miles granted by monthly allocations")
miles_expired_total = Counter("miles_expired_total", "Service Miles forfeited above the rollover cap")
miles_debit_total = Counter(
    "miles_debit_total", "Number of successful request debits", ["service_type"]
)
miles_insufficient_total = Counter(
    "miles_insufficient_total", "Number of submissions rejected for insufficient miles", ["service_type"]
)
miles_idempotency_replay_total = Counter(
    "miles_idempotency_replay_total", "Number of idempotent replays detected", ["operation"]
)
miles_cancellation_total = Counter(
    "miles_cancellation_total", "Number of request cancellations by lifecycle stage", ["stage"]
)
miles_refunded_total = Counter("miles_refunded_total", "Service Miles refunded on cancellation")
