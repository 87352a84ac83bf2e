"""
Subscription billing metrics
"""

from decimal import Decimal

import structlog
from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from randevu.platform.billing.money_utils import create_money, money_handler

logger = structlog.get_logger(__name__)


class SubscriptionMetrics:
    """Subscription lifecycle metrics collector"""

    def __init__(self, meter: Meter | None = None) -> None:
        self.meter = meter or metrics.get_meter("randevu.billing.subscriptions")

        # Lifecycle metrics
        self.transition_counter = self._create_counter(
            name="billing.subscription.transition",
            description="Subscription lifecycle transitions",
        )

        # Renewal metrics
        self.renewal_succeeded_counter = self._create_counter(
            name="billing.subscription.renewal.succeeded",
            description="Number of successful renewal charges",
        )
        self.renewal_failed_counter = self._create_counter(
            name="billing.subscription.renewal.failed",
            description="Number of failed renewal charges",
        )

        # Proration metrics
        self.proration_amount_histogram = self._create_histogram(
            name="billing.subscription.proration.amount",
            description="Net proration amounts in minor units",
            unit="minor_units",
        )

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    def _create_histogram(self, name: str, description: str, unit: str = "1") -> Histogram:
        return self.meter.create_histogram(name=name, description=description, unit=unit)

    def record_transition(self, from_status: str | None, to_status: str, reason: str) -> None:
        """Record a subscription status transition"""
        attributes = {
            "from_status": from_status or "none",
            "to_status": to_status,
            "reason": reason,
        }
        self.transition_counter.add(1, attributes)
        logger.debug("subscription.metrics.transition", **attributes)

    def record_renewal(self, success: bool, plan_id: str, currency: str) -> None:
        """Record a renewal charge attempt"""
        attributes = {"plan_id": plan_id, "currency": currency}
        if success:
            self.renewal_succeeded_counter.add(1, attributes)
        else:
            self.renewal_failed_counter.add(1, attributes)

    def record_proration(self, net_amount: Decimal, currency: str, change_type: str) -> None:
        """Record the absolute net proration amount"""
        minor_units = money_handler.money_to_minor_units(create_money(abs(net_amount), currency))
        self.proration_amount_histogram.record(
            minor_units, {"currency": currency, "change_type": change_type}
        )


# Global metrics instance
_subscription_metrics: SubscriptionMetrics | None = None


def get_subscription_metrics() -> SubscriptionMetrics:
    """Get the global subscription metrics instance"""
    global _subscription_metrics
    if _subscription_metrics is None:
        _subscription_metrics = SubscriptionMetrics()
    return _subscription_metrics
