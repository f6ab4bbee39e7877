"""Prometheus metrics for monitoring submissions, lender decisions, expiry and notifications"""

from prometheus_client import Counter, Histogram

# Payment metrics
payment_submission_counter = Counter(
    "peerlend_payment_submissions_total",
    "Payment submissions by outcome",
    ["outcome", "reason"],  # accepted | rejected, rejection reason or "none"
)

payment_transition_counter = Counter(
    "peerlend_payment_transitions_total",
    "Payment state transitions",
    ["status"],  # paid | rejected | expired
)

payment_timing_counter = Counter(
    "peerlend_payment_timing_total",
    "Accepted submissions by timing classification",
    ["timing"],  # on_time | within_grace | overdue
)

schedule_counter = Counter(
    "peerlend_schedules_computed_total",
    "Amortization schedules computed",
    ["repayment_type"],
)

# Expiry sweep
expiry_sweep_histogram = Histogram(
    "peerlend_expiry_sweep_seconds",
    "Duration of the pending payment expiry sweep",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

# Notification metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification deliveries",
    ["event"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_submission(accepted: bool, reason: str | None = None, timing: str | None = None) -> None:
    """Record submission outcome for monitoring rejection reasons and lateness"""
    outcome = "accepted" if accepted else "rejected"
    payment_submission_counter.labels(outcome=outcome, reason=reason or "none").inc()
    if accepted and timing:
        payment_timing_counter.labels(timing=timing).inc()


def record_transition(status: str, count: int = 1) -> None:
    payment_transition_counter.labels(status=status).inc(count)
