"""Prometheus metrics exposed by the push relay."""

from prometheus_client import Counter, Gauge, CollectorRegistry, generate_latest


class PushMetrics:
    """Wrapper around the Prometheus registry used by the service."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Create counters and gauges inside the provided registry."""
        self.registry = registry or CollectorRegistry()
        self.attempts = Counter(
            "push_delivery_attempts_total", "Delivery attempts by outcome", ["outcome"], registry=self.registry
        )
        self.enqueued = Counter("push_enqueued_total", "Recipients accepted for delivery", registry=self.registry)
        self.rejected = Counter(
            "push_rejected_requests_total", "Push requests refused by the ingress", ["reason"], registry=self.registry
        )
        self.pending = Gauge("push_pending_messages", "Current pending recipients", registry=self.registry)

    def inc_attempt(self, outcome: str):
        """Increase the attempts counter for the given outcome kind."""
        self.attempts.labels(outcome=outcome or "unknown").inc()

    def inc_enqueued(self, count: int = 1):
        """Increase the counter of accepted recipients."""
        self.enqueued.inc(count)

    def inc_rejected(self, reason: str):
        """Increase the counter of refused push requests."""
        self.rejected.labels(reason=reason or "invalid").inc()

    def set_pending(self, value: int):
        """Update the gauge tracking pending recipients."""
        self.pending.set(value)

    def generate_latest(self) -> bytes:
        """Return the latest metrics snapshot in Prometheus text format."""
        return generate_latest(self.registry)
