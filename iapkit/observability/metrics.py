"""
Metrics Collection with Prometheus.

Exposes purchase reconciliation metrics for monitoring.
"""

from collections.abc import Callable
from enum import Enum

from prometheus_client import Counter, Histogram, Info

from iapkit.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENVIRONMENT = "environment"
    OUTCOME = "outcome"
    STATE = "state"
    REASON = "reason"
    REQUEST_KIND = "request_kind"


class IAPMetrics:
    """
    Centralized metrics for purchase reconciliation.

    Covers:
    - Queue events (rate by transaction state)
    - Receipt verification (rate by outcome, latency)
    - Finalization (rate by reason)
    - Platform requests (receipt refresh, product lookup)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""
        self.enabled = settings.metrics_enabled

        self.service_info = Info(
            "iapkit_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Queue Metrics
        # ====================================================================
        self.transaction_events_total = Counter(
            "iapkit_transaction_events_total",
            "Transaction state events received from the payment queue",
            [MetricLabels.STATE.value],
        )

        self.transactions_finalized_total = Counter(
            "iapkit_transactions_finalized_total",
            "Transactions finished on the payment queue",
            [MetricLabels.REASON.value],
        )

        # ====================================================================
        # Verification Metrics
        # ====================================================================
        self.verifications_total = Counter(
            "iapkit_receipt_verifications_total",
            "Receipt verification round-trips",
            [MetricLabels.ENVIRONMENT.value, MetricLabels.OUTCOME.value],
        )

        self.verification_duration_seconds = Histogram(
            "iapkit_receipt_verification_duration_seconds",
            "Receipt verification round-trip duration in seconds",
            [MetricLabels.ENVIRONMENT.value],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Platform Request Metrics
        # ====================================================================
        self.platform_requests_total = Counter(
            "iapkit_platform_requests_total",
            "Platform requests by kind and outcome",
            [MetricLabels.REQUEST_KIND.value, MetricLabels.OUTCOME.value],
        )

    def _record(self, action: Callable[[], None]) -> None:
        if self.enabled:
            action()

    def record_transaction_event(self, state: str) -> None:
        """Record a queue event for a transaction."""
        self._record(lambda: self.transaction_events_total.labels(state=state).inc())

    def record_finalized(self, reason: str) -> None:
        """Record a finish call on the payment queue."""
        self._record(lambda: self.transactions_finalized_total.labels(reason=reason).inc())

    def record_verification(self, environment: str, outcome: str, duration: float) -> None:
        """Record a verification round-trip and its latency."""

        def _observe() -> None:
            self.verifications_total.labels(environment=environment, outcome=outcome).inc()
            self.verification_duration_seconds.labels(environment=environment).observe(duration)

        self._record(_observe)

    def record_platform_request(self, request_kind: str, outcome: str) -> None:
        """Record a completed platform request."""
        self._record(
            lambda: self.platform_requests_total.labels(
                request_kind=request_kind, outcome=outcome
            ).inc()
        )


# Global metrics instance
metrics = IAPMetrics()
