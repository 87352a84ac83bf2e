"""
Renewal and expiry sweeper.

Run periodically by Celery beat. Each subscription is handled in its own
transaction; a failure is recorded in the :class:`SweepResult` and the
batch moves on. Status changes go through the conditional ``transition``
update pinned to the period that was read, and a renewal claims its row
before charging, so overlapping sweeps skip rows another sweep already moved.
"""

import math
from collections.abc import Callable
from datetime import datetime, timedelta

from randevu.platform.billing.metrics import SubscriptionMetrics, get_subscription_metrics
from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.gateway import ChargeResult, PaymentGateway
from randevu.platform.billing.subscriptions.models import (
    Subscription,
    SubscriptionEventType,
    SubscriptionPlan,
    SubscriptionStatus,
    SweepResult,
    add_billing_interval,
    utcnow,
)
from randevu.platform.billing.subscriptions.notifications import (
    LoggingNotifier,
    SubscriptionNotifier,
    dispatch_notification,
)
from randevu.platform.billing.subscriptions.repository import SubscriptionRepository
from randevu.platform.logging import get_logger

logger = get_logger(__name__)

_LIVE_UNPAID = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def _days_left(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now) / timedelta(days=1)))


def next_period(
    period_end: datetime, plan: SubscriptionPlan, now: datetime
) -> tuple[datetime, datetime]:
    """Period following ``period_end``; restarts from ``now`` when a whole period was missed."""
    start = period_end
    if add_billing_interval(start, plan.billing_interval) <= now:
        start = now
    return start, add_billing_interval(start, plan.billing_interval)


class SubscriptionSweeper:
    """Applies time-driven transitions: renewals, dunning, cancellation and expiry."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        catalog: PlanCatalog,
        gateway: PaymentGateway,
        notifier: SubscriptionNotifier | None = None,
        metrics: SubscriptionMetrics | None = None,
        max_retry_attempts: int = 3,
        past_due_expiry_days: int = 30,
        retry_interval_hours: int = 24,
        trial_ending_notice_days: int = 3,
        renewal_reminder_days: int = 3,
        batch_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.gateway = gateway
        self.notifier = notifier or LoggingNotifier()
        self.metrics = metrics or get_subscription_metrics()
        self.max_retry_attempts = max_retry_attempts
        self.past_due_expiry_days = past_due_expiry_days
        self.retry_interval = timedelta(hours=retry_interval_hours)
        self.trial_ending_notice_days = trial_ending_notice_days
        self.renewal_reminder_days = renewal_reminder_days
        self.batch_size = batch_size
        self.clock = clock

    # ========================================
    # Renewals
    # ========================================

    async def process_subscription_renewals(self, now: datetime | None = None) -> SweepResult:
        """Charge every subscription whose period has ended and that renews automatically."""
        now = now or self.clock()
        result = SweepResult()
        due = await self.repository.find_due_for_renewal(
            now, self.max_retry_attempts, limit=self.batch_size
        )
        logger.info("subscription.renewal.sweep_started", due=len(due))

        for subscription in due:
            result.processed += 1
            try:
                await self._renew(subscription, now, result)
            except Exception as exc:
                result.errors.append(f"{subscription.subscription_id}: {exc}")
                logger.error(
                    "subscription.renewal.error",
                    subscription_id=subscription.subscription_id,
                    business_id=subscription.business_id,
                    error=str(exc),
                    exc_info=True,
                )

        logger.info("subscription.renewal.sweep_completed", **result.model_dump(exclude={"errors"}))
        return result

    async def _charge_renewal(
        self, subscription: Subscription, plan: SubscriptionPlan
    ) -> ChargeResult:
        if not subscription.payment_method_id:
            return ChargeResult(success=False, failure_reason="no_payment_method")
        period_key = subscription.current_period_end.strftime("%Y%m%d%H%M%S")
        return await self.gateway.charge(
            subscription.payment_method_id,
            plan.price,
            plan.currency,
            description=f"{plan.display_name} renewal",
            metadata={
                "subscription_id": subscription.subscription_id,
                "purpose": "renewal",
                "idempotency_key": (
                    f"{subscription.subscription_id}:renewal:{period_key}:"
                    f"{subscription.failed_payment_count}"
                ),
            },
        )

    async def _claim(self, subscription: Subscription, now: datetime) -> Subscription | None:
        """Mark the period as being billed, or return None if the snapshot is stale.

        The claim moves ``next_billing_date`` past ``now``, so any other sweep
        still holding the same snapshot no longer matches and never charges.
        """
        return await self.repository.transition(
            subscription.subscription_id,
            [subscription.status],
            {"next_billing_date": now + self.retry_interval},
            expected={
                "current_period_end": subscription.current_period_end,
                "next_billing_date": subscription.next_billing_date,
                "failed_payment_count": subscription.failed_payment_count,
            },
        )

    async def _renew(self, subscription: Subscription, now: datetime, result: SweepResult) -> None:
        async with self.repository.transaction():
            if await self._claim(subscription, now) is None:
                logger.info(
                    "subscription.renewal.already_claimed",
                    subscription_id=subscription.subscription_id,
                )
                result.skipped += 1
                return

            plan = await self.catalog.get_plan_by_id(
                subscription.scheduled_plan_id or subscription.plan_id
            )
            charge = await self._charge_renewal(subscription, plan)

            if charge.success:
                start, end = next_period(subscription.current_period_end, plan, now)
                updated = await self.repository.transition(
                    subscription.subscription_id,
                    [subscription.status],
                    {
                        "status": SubscriptionStatus.ACTIVE,
                        "plan_id": plan.plan_id,
                        "scheduled_plan_id": None,
                        "current_period_start": start,
                        "current_period_end": end,
                        "next_billing_date": end,
                        "failed_payment_count": 0,
                    },
                )
                if updated is None:
                    logger.warning(
                        "subscription.renewal.lost_race",
                        subscription_id=subscription.subscription_id,
                        transaction_id=charge.transaction_id,
                    )
                    result.skipped += 1
                    return
                await self.repository.add_event(
                    updated,
                    SubscriptionEventType.RENEWED,
                    {
                        "plan_id": plan.plan_id,
                        "previous_plan_id": subscription.plan_id,
                        "amount": plan.price,
                        "transaction_id": charge.transaction_id,
                        "period_start": start,
                        "period_end": end,
                    },
                )
            else:
                attempt = subscription.failed_payment_count + 1
                changes = {
                    "status": SubscriptionStatus.PAST_DUE,
                    "failed_payment_count": attempt,
                    "next_billing_date": now + self.retry_interval,
                }
                if attempt >= self.max_retry_attempts:
                    changes["auto_renewal"] = False
                updated = await self.repository.transition(
                    subscription.subscription_id, [subscription.status], changes
                )
                if updated is None:
                    result.skipped += 1
                    return
                await self.repository.add_event(
                    updated,
                    SubscriptionEventType.PAYMENT_FAILED,
                    {
                        "plan_id": plan.plan_id,
                        "amount": plan.price,
                        "reason": charge.failure_reason,
                        "attempt": attempt,
                        "auto_renewal_disabled": attempt >= self.max_retry_attempts,
                    },
                )

        self.metrics.record_renewal(charge.success, plan.plan_id, plan.currency)
        if updated.status != subscription.status:
            self.metrics.record_transition(
                subscription.status.value, updated.status.value, "renewal"
            )

        if charge.success:
            result.renewed += 1
            logger.info(
                "subscription.renewal.succeeded",
                subscription_id=updated.subscription_id,
                business_id=updated.business_id,
                plan_id=plan.plan_id,
                period_end=updated.current_period_end.isoformat(),
            )
            await dispatch_notification(
                self.notifier.renewal_succeeded(updated, plan, plan.price),
                "renewal_succeeded",
                subscription_id=updated.subscription_id,
            )
        else:
            result.failed += 1
            result.past_due += 1
            logger.warning(
                "subscription.renewal.failed",
                subscription_id=updated.subscription_id,
                business_id=updated.business_id,
                reason=charge.failure_reason,
                attempt=updated.failed_payment_count,
            )
            await dispatch_notification(
                self.notifier.payment_failed(
                    updated, plan, charge.failure_reason, updated.failed_payment_count
                ),
                "payment_failed",
                subscription_id=updated.subscription_id,
            )

    # ========================================
    # Cancellation and expiry
    # ========================================

    async def process_expired_subscriptions(self, now: datetime | None = None) -> SweepResult:
        """Cancel or expire subscriptions whose period ended without a renewal."""
        now = now or self.clock()
        result = SweepResult()
        candidates = await self.repository.find_expiry_candidates(
            now,
            now - timedelta(days=self.past_due_expiry_days),
            self.max_retry_attempts,
            limit=self.batch_size,
        )
        logger.info("subscription.expiry.sweep_started", candidates=len(candidates))

        for subscription in candidates:
            result.processed += 1
            try:
                await self._expire(subscription, now, result)
            except Exception as exc:
                result.errors.append(f"{subscription.subscription_id}: {exc}")
                logger.error(
                    "subscription.expiry.error",
                    subscription_id=subscription.subscription_id,
                    business_id=subscription.business_id,
                    error=str(exc),
                    exc_info=True,
                )

        logger.info("subscription.expiry.sweep_completed", **result.model_dump(exclude={"errors"}))
        return result

    async def _expire(self, subscription: Subscription, now: datetime, result: SweepResult) -> None:
        scheduled_cancel = (
            subscription.status in _LIVE_UNPAID and subscription.cancel_at_period_end
        )
        async with self.repository.transaction():
            if scheduled_cancel:
                target = SubscriptionStatus.CANCELED
                event_type = SubscriptionEventType.CANCELED
                changes = {
                    "status": target,
                    "cancel_at_period_end": False,
                    "auto_renewal": False,
                    "scheduled_plan_id": None,
                    "canceled_at": subscription.canceled_at or now,
                }
            else:
                target = SubscriptionStatus.EXPIRED
                event_type = SubscriptionEventType.EXPIRED
                changes = {
                    "status": target,
                    "auto_renewal": False,
                    "scheduled_plan_id": None,
                    "ended_at": now,
                }

            updated = await self.repository.transition(
                subscription.subscription_id,
                [subscription.status],
                changes,
                expected={"current_period_end": subscription.current_period_end},
            )
            if updated is None:
                result.skipped += 1
                return
            await self.repository.add_event(
                updated,
                event_type,
                {"previous_status": subscription.status.value, "reason": "period_ended"},
            )

        self.metrics.record_transition(subscription.status.value, target.value, "sweeper")
        if target == SubscriptionStatus.CANCELED:
            result.canceled += 1
        else:
            result.expired += 1
        logger.info(
            f"subscription.{target.value}",
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            previous_status=subscription.status.value,
        )

    # ========================================
    # Notifications
    # ========================================

    async def send_trial_ending_notifications(
        self, days: int | None = None, now: datetime | None = None
    ) -> SweepResult:
        """Notify businesses whose trial ends within ``days``."""
        now = now or self.clock()
        days = self.trial_ending_notice_days if days is None else days
        result = SweepResult()

        for subscription in await self.repository.find_trials_ending(now, now + timedelta(days=days)):
            result.processed += 1
            try:
                plan = await self.catalog.get_plan_by_id(subscription.plan_id)
            except Exception as exc:
                result.errors.append(f"{subscription.subscription_id}: {exc}")
                continue
            delivered = await dispatch_notification(
                self.notifier.trial_ending(
                    subscription, plan, _days_left(subscription.trial_end or now, now)
                ),
                "trial_ending",
                subscription_id=subscription.subscription_id,
            )
            if delivered:
                result.notified += 1
            else:
                result.failed += 1

        logger.info("subscription.trial_ending.sweep_completed", notified=result.notified)
        return result

    async def send_renewal_reminders(
        self, days: int | None = None, now: datetime | None = None
    ) -> SweepResult:
        """Remind businesses whose period ends within ``days`` and will not renew automatically."""
        now = now or self.clock()
        days = self.renewal_reminder_days if days is None else days
        result = SweepResult()

        ending = await self.repository.find_periods_ending_without_renewal(
            now, now + timedelta(days=days)
        )
        for subscription in ending:
            result.processed += 1
            try:
                plan = await self.catalog.get_plan_by_id(subscription.plan_id)
            except Exception as exc:
                result.errors.append(f"{subscription.subscription_id}: {exc}")
                continue
            delivered = await dispatch_notification(
                self.notifier.renewal_reminder(
                    subscription, plan, _days_left(subscription.current_period_end, now)
                ),
                "renewal_reminder",
                subscription_id=subscription.subscription_id,
            )
            if delivered:
                result.notified += 1
            else:
                result.failed += 1

        logger.info("subscription.renewal_reminder.sweep_completed", notified=result.notified)
        return result

    async def run(self, now: datetime | None = None) -> SweepResult:
        """Expiry first, then renewals."""
        now = now or self.clock()
        expired = await self.process_expired_subscriptions(now)
        renewed = await self.process_subscription_renewals(now)
        return expired.merge(renewed)


__all__ = ["SubscriptionSweeper", "next_period"]
