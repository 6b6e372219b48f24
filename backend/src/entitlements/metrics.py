"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Histogram

# Business metrics for monitoring

# Admission control metrics
quota_consume_total = Counter(
    "quota_consume_total",
    "Total quota consumption attempts",
    labelnames=["feature_key", "outcome"],  # outcome: allowed, denied
)

extra_allowance_granted_total = Counter(
    "extra_allowance_granted_total",
    "Total bonus quota units granted by admins",
    labelnames=["feature_key"],
)

# Subscription metrics
subscriptions_created_total = Counter(
    "subscriptions_created_total",
    "Total subscriptions created",
    labelnames=["source"],  # source: explicit, provisioned
)

subscriptions_canceled_total = Counter(
    "subscriptions_canceled_total",
    "Total subscriptions canceled",
    labelnames=["reason"],  # reason: period_end, immediate
)

# Reconciler metrics
billing_periods_advanced_total = Counter(
    "billing_periods_advanced_total",
    "Total billing periods advanced by the reconciler",
    labelnames=["interval"],
)

usage_records_purged_total = Counter(
    "usage_records_purged_total",
    "Total closed-period usage records deleted",
)

reconciler_errors_total = Counter(
    "reconciler_errors_total",
    "Total subscriptions skipped by the reconciler due to errors",
    labelnames=["error_type"],
)

reconciler_run_duration_seconds = Histogram(
    "reconciler_run_duration_seconds",
    "Billing period reconciler run duration in seconds",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 900, 1800],
)
