from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Credits consumed, labelled by pool ("monthly" or "wallet")
credits_consumed_total = Counter(
    "credits_consumed_total", "Total credits consumed", ["pool"]
)

# Deductions declined for lack of balance
insufficient_credits_total = Counter(
    "insufficient_credits_total", "Number of deductions declined", ["pool"]
)

# Requests for a model outside the caller's plan
model_forbidden_total = Counter(
    "model_forbidden_total", "Number of model access denials"
)

# Payment signature failures (client confirmation or webhook envelope)
signature_invalid_total = Counter(
    "signature_invalid_total", "Total invalid payment signatures", ["source"]
)

# Payments credited, by kind ("pro" or "website_credits")
purchase_credited_total = Counter(
    "purchase_credited_total", "Total payments credited", ["kind"]
)

# Redelivered payments that were already credited
payment_duplicate_total = Counter(
    "payment_duplicate_total", "Total duplicate payment deliveries"
)

payment_fail_total = Counter(
    "payment_fail_total", "Total payment failures"
)

# Store timeouts and driver errors
store_unavailable_total = Counter(
    "store_unavailable_total", "Total balance store failures"
)

# Usage log writes that failed (never fatal)
usage_log_fail_total = Counter(
    "usage_log_fail_total", "Total failed usage log writes"
)

_store_buckets = (
    0.005,
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
)

store_op_seconds = Histogram(
    "store_op_seconds", "Balance store operation latency", buckets=_store_buckets
)

# Accounts downgraded by the expiry sweep
downgrade_total = Counter(
    "subscription_downgrade_total", "Total expired subscriptions downgraded"
)

__all__ = [
    "credits_consumed_total",
    "insufficient_credits_total",
    "model_forbidden_total",
    "signature_invalid_total",
    "purchase_credited_total",
    "payment_duplicate_total",
    "payment_fail_total",
    "store_unavailable_total",
    "usage_log_fail_total",
    "store_op_seconds",
    "downgrade_total",
]
