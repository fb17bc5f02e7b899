"""Prometheus metrics for order outcomes, provider health, sweeps and notifications"""

from prometheus_client import Counter, Histogram

# Order metrics
order_submission_counter = Counter(
    "proofport_order_submissions_total",
    "Order submissions by outcome",
    ["outcome"],  # created | partial | blocked | provider_failure
)

risk_level_counter = Counter(
    "proofport_risk_level_total",
    "Risk assessments by level",
    ["level"],  # low | medium | high
)

extension_counter = Counter(
    "proofport_extensions_total",
    "Successful order extensions",
)

# Provider metrics
provider_failure_counter = Counter(
    "proofport_provider_failures_total",
    "Failed reservation provider calls",
    ["kind", "operation"],  # operation: acquire | release | extend
)

provider_latency_histogram = Histogram(
    "proofport_provider_latency_seconds",
    "Reservation provider hold request time",
    ["kind"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Sweep metrics
sweep_cancelled_counter = Counter(
    "proofport_sweep_cancelled_total",
    "Orders cancelled by the expiry sweep",
)

sweep_failure_counter = Counter(
    "proofport_sweep_failures_total",
    "Orders the expiry sweep failed to process",
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
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_submission(outcome: str, risk_level: str | None = None) -> None:
    """Record submission outcome and the risk level that gated it"""
    order_submission_counter.labels(outcome=outcome).inc()
    if risk_level is not None:
        risk_level_counter.labels(level=risk_level).inc()
