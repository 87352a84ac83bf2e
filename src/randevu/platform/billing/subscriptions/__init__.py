"""
Business subscriptions.

Plan catalog, lifecycle manager, proration, usage limits and the
renewal/expiry sweeper.
"""

from randevu.platform.billing.subscriptions.catalog import DEFAULT_PLANS, PlanCatalog
from randevu.platform.billing.subscriptions.models import (
    BillingInterval,
    ChangeEffective,
    ChangeType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageResource,
)
from randevu.platform.billing.subscriptions.proration import calculate_proration
from randevu.platform.billing.subscriptions.service import SubscriptionService
from randevu.platform.billing.subscriptions.sweeper import SubscriptionSweeper
from randevu.platform.billing.subscriptions.usage import UsageLimitValidator

__all__ = [
    "DEFAULT_PLANS",
    "PlanCatalog",
    "BillingInterval",
    "ChangeEffective",
    "ChangeType",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "UsageResource",
    "calculate_proration",
    "SubscriptionService",
    "SubscriptionSweeper",
    "UsageLimitValidator",
]
