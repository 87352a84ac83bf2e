"""
Subscription notification collaborator.

Delivery (SMS, push, email) lives outside this service. Notifications are
fire-and-forget: :func:`dispatch_notification` logs and swallows any
failure so a broken provider never undoes a committed state change.
"""

from collections.abc import Awaitable
from decimal import Decimal
from typing import Protocol

from randevu.platform.billing.money_utils import create_money, format_money
from randevu.platform.billing.subscriptions.models import Subscription, SubscriptionPlan
from randevu.platform.logging import get_logger

logger = get_logger(__name__)


class SubscriptionNotifier(Protocol):
    """Alerts sent to a business about its subscription."""

    async def trial_ending(
        self, subscription: Subscription, plan: SubscriptionPlan, days_left: int
    ) -> None: ...

    async def payment_failed(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        reason: str | None,
        attempt: int,
    ) -> None: ...

    async def renewal_succeeded(
        self, subscription: Subscription, plan: SubscriptionPlan, amount: Decimal
    ) -> None: ...

    async def renewal_reminder(
        self, subscription: Subscription, plan: SubscriptionPlan, days_left: int
    ) -> None: ...

    async def subscription_canceled(
        self, subscription: Subscription, plan: SubscriptionPlan, at_period_end: bool
    ) -> None: ...


class LoggingNotifier:
    """Default notifier: records each alert as a structured log event."""

    async def trial_ending(
        self, subscription: Subscription, plan: SubscriptionPlan, days_left: int
    ) -> None:
        logger.info(
            "subscription.notification.trial_ending",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            plan=plan.display_name,
            days_left=days_left,
        )

    async def payment_failed(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        reason: str | None,
        attempt: int,
    ) -> None:
        logger.info(
            "subscription.notification.payment_failed",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            plan=plan.display_name,
            reason=reason,
            attempt=attempt,
        )

    async def renewal_succeeded(
        self, subscription: Subscription, plan: SubscriptionPlan, amount: Decimal
    ) -> None:
        logger.info(
            "subscription.notification.renewal_succeeded",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            plan=plan.display_name,
            amount=format_money(create_money(amount, plan.currency)),
        )

    async def renewal_reminder(
        self, subscription: Subscription, plan: SubscriptionPlan, days_left: int
    ) -> None:
        logger.info(
            "subscription.notification.renewal_reminder",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            plan=plan.display_name,
            days_left=days_left,
        )

    async def subscription_canceled(
        self, subscription: Subscription, plan: SubscriptionPlan, at_period_end: bool
    ) -> None:
        logger.info(
            "subscription.notification.canceled",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            plan=plan.display_name,
            at_period_end=at_period_end,
        )


async def dispatch_notification(notification: Awaitable[None], event: str, **context: object) -> bool:
    """Await ``notification``; log and swallow any failure.

    Returns True when the notification was delivered.
    """
    try:
        await notification
        return True
    except Exception as exc:
        logger.warning(
            "subscription.notification.failed",
            notification=event,
            error=str(exc),
            **context,
        )
        return False


__all__ = ["SubscriptionNotifier", "LoggingNotifier", "dispatch_notification"]
