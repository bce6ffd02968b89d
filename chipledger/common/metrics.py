"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
credits_granted_total = Counter(
    "credits_granted_total",
    "Registration credits minted",
    ["service", "source"],
)
credits_consumed_total = Counter("credits_consumed_total", "Registration credits consumed", ["service"])
payment_required_total = Counter(
    "payment_required_total",
    "Requests turned away because a payment is required first",
    ["service", "purpose"],
)
confirmations_total = Counter(
    "confirmations_total",
    "Payment confirmations reconciled",
    ["service", "channel", "purpose", "outcome"],
)
duplicate_confirmations_skipped_total = Counter(
    "duplicate_confirmations_skipped_total",
    "Confirmations that found their reference already applied",
    ["service", "channel"],
)
confirmations_rejected_total = Counter(
    "confirmations_rejected_total",
    "Confirmations that could not prove payment",
    ["service", "channel", "reason"],
)
promo_redemptions_total = Counter(
    "promo_redemptions_total",
    "Promo code redemption attempts",
    ["service", "outcome"],
)
transfer_transitions_total = Counter(
    "transfer_transitions_total",
    "Transfer request lifecycle transitions",
    ["service", "to_state"],
)
provider_latency_seconds = Histogram(
    "provider_latency_seconds",
    "Payment provider call latency seconds",
    ["service", "operation"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
