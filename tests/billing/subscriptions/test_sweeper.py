"""
Tests for the renewal and expiry sweeper.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from randevu.platform.billing.subscriptions.models import (
    BillingInterval,
    SubscriptionEventType,
    SubscriptionPlan,
    SubscriptionStatus,
)
from randevu.platform.billing.subscriptions.sweeper import next_period

PERIOD_END = datetime(2025, 4, 1, tzinfo=UTC)
AFTER_PERIOD = PERIOD_END + timedelta(hours=1)


async def event_types(repository, subscription_id: str) -> list[SubscriptionEventType]:
    return [event.event_type for event in await repository.list_events(subscription_id)]


class TestNextPeriod:
    plan = SubscriptionPlan(
        plan_id="plan_m",
        name="m",
        display_name="M",
        price=Decimal("1"),
        billing_interval=BillingInterval.MONTHLY,
    )

    def test_continues_from_period_end(self):
        start, end = next_period(PERIOD_END, self.plan, AFTER_PERIOD)
        assert start == PERIOD_END
        assert end == datetime(2025, 5, 1, tzinfo=UTC)

    def test_restarts_when_whole_period_missed(self):
        now = datetime(2025, 5, 5, 8, 0, tzinfo=UTC)
        start, end = next_period(PERIOD_END, self.plan, now)
        assert start == now
        assert end == datetime(2025, 6, 5, 8, 0, tzinfo=UTC)


class TestRenewals:
    """Charging subscriptions whose period has ended."""

    @pytest.mark.asyncio
    async def test_successful_renewal_advances_period(
        self, sweeper, gateway, notifier, repository, make_subscription
    ):
        subscription = await make_subscription()

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.processed == 1
        assert result.renewed == 1
        assert result.errors == []
        renewed = await repository.get_subscription(subscription.subscription_id)
        assert renewed.status == SubscriptionStatus.ACTIVE
        assert renewed.current_period_start == PERIOD_END
        assert renewed.current_period_end == datetime(2025, 5, 1, tzinfo=UTC)
        assert renewed.next_billing_date == renewed.current_period_end
        assert gateway.charges[0]["amount"] == Decimal("750.00")
        assert gateway.charges[0]["metadata"]["purpose"] == "renewal"
        assert notifier.sent == [("renewal_succeeded", subscription.subscription_id)]
        assert SubscriptionEventType.RENEWED in await event_types(
            repository, subscription.subscription_id
        )

    @pytest.mark.asyncio
    async def test_period_not_ended_is_left_alone(self, sweeper, gateway, make_subscription):
        await make_subscription()

        result = await sweeper.process_subscription_renewals(PERIOD_END - timedelta(minutes=1))

        assert result.processed == 0
        assert gateway.charges == []

    @pytest.mark.asyncio
    async def test_scheduled_plan_applied_on_renewal(
        self, sweeper, gateway, repository, make_subscription
    ):
        subscription = await make_subscription(scheduled_plan_id="plan_professional_monthly")

        await sweeper.process_subscription_renewals(AFTER_PERIOD)

        renewed = await repository.get_subscription(subscription.subscription_id)
        assert renewed.plan_id == "plan_professional_monthly"
        assert renewed.scheduled_plan_id is None
        assert gateway.charges[0]["amount"] == Decimal("1250.00")

    @pytest.mark.asyncio
    async def test_trial_with_card_renews_into_paid_period(
        self, sweeper, repository, make_subscription
    ):
        subscription = await make_subscription(
            plan_id="plan_professional_monthly",
            status=SubscriptionStatus.TRIALING,
            period_start=PERIOD_END - timedelta(days=14),
            trial_start=PERIOD_END - timedelta(days=14),
            trial_end=PERIOD_END,
        )

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.renewed == 1
        renewed = await repository.get_subscription(subscription.subscription_id)
        assert renewed.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_declined_renewal_goes_past_due(
        self, sweeper, gateway, notifier, repository, make_subscription
    ):
        subscription = await make_subscription()
        gateway.decline_reason = "insufficient_funds"

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.failed == 1
        assert result.past_due == 1
        failed = await repository.get_subscription(subscription.subscription_id)
        assert failed.status == SubscriptionStatus.PAST_DUE
        assert failed.failed_payment_count == 1
        assert failed.auto_renewal is True
        assert failed.next_billing_date == AFTER_PERIOD + timedelta(hours=24)
        assert failed.current_period_end == PERIOD_END
        assert notifier.kinds() == ["payment_failed"]

    @pytest.mark.asyncio
    async def test_past_due_retried_after_interval(self, sweeper, gateway, make_subscription):
        await make_subscription()
        gateway.decline_reason = "insufficient_funds"
        await sweeper.process_subscription_renewals(AFTER_PERIOD)

        too_soon = await sweeper.process_subscription_renewals(AFTER_PERIOD + timedelta(hours=1))
        retried = await sweeper.process_subscription_renewals(AFTER_PERIOD + timedelta(hours=25))

        assert too_soon.processed == 0
        assert retried.processed == 1
        assert len(gateway.charges) == 2

    @pytest.mark.asyncio
    async def test_last_attempt_disables_auto_renewal(
        self, sweeper, gateway, repository, make_subscription
    ):
        subscription = await make_subscription(
            status=SubscriptionStatus.PAST_DUE,
            failed_payment_count=2,
            next_billing_date=AFTER_PERIOD,
        )
        gateway.decline_reason = "card_declined"

        await sweeper.process_subscription_renewals(AFTER_PERIOD)

        failed = await repository.get_subscription(subscription.subscription_id)
        assert failed.failed_payment_count == 3
        assert failed.auto_renewal is False

        again = await sweeper.process_subscription_renewals(AFTER_PERIOD + timedelta(days=2))
        assert again.processed == 0

    @pytest.mark.asyncio
    async def test_past_due_recovers(self, sweeper, repository, make_subscription):
        subscription = await make_subscription(
            status=SubscriptionStatus.PAST_DUE,
            failed_payment_count=1,
            next_billing_date=AFTER_PERIOD,
        )

        await sweeper.process_subscription_renewals(AFTER_PERIOD)

        recovered = await repository.get_subscription(subscription.subscription_id)
        assert recovered.status == SubscriptionStatus.ACTIVE
        assert recovered.failed_payment_count == 0

    @pytest.mark.asyncio
    async def test_missing_payment_method_counts_as_failure(
        self, sweeper, gateway, repository, make_subscription
    ):
        subscription = await make_subscription(payment_method_id=None)

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.failed == 1
        assert gateway.charges == []
        events = await repository.list_events(subscription.subscription_id)
        assert events[-1].event_data["reason"] == "no_payment_method"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(
        self, sweeper, repository, make_subscription
    ):
        broken = await make_subscription(business_id="biz-broken", plan_id="plan_missing")
        healthy = await make_subscription()

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.processed == 2
        assert result.renewed == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"{broken.subscription_id}:")
        renewed = await repository.get_subscription(healthy.subscription_id)
        assert renewed.current_period_end == datetime(2025, 5, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_gateway_exception_is_recorded(self, sweeper, gateway, repository, make_subscription):
        subscription = await make_subscription()
        gateway.raise_error = RuntimeError("provider exploded")

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.errors == [f"{subscription.subscription_id}: provider exploded"]
        unchanged = await repository.get_subscription(subscription.subscription_id)
        assert unchanged.status == SubscriptionStatus.ACTIVE
        assert unchanged.current_period_end == PERIOD_END

    @pytest.mark.asyncio
    async def test_row_moved_by_another_writer_is_skipped(
        self, sweeper, gateway, repository, make_subscription
    ):
        stale = await make_subscription()
        async with repository.transaction():
            await repository.transition(
                stale.subscription_id,
                [SubscriptionStatus.ACTIVE],
                {"status": SubscriptionStatus.CANCELED},
            )

        async def find_stale(*args, **kwargs):
            return [stale]

        sweeper.repository.find_due_for_renewal = find_stale

        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.skipped == 1
        assert result.renewed == 0
        assert gateway.charges == []
        current = await repository.get_subscription(stale.subscription_id)
        assert current.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_stale_snapshot_of_renewed_row_is_not_charged_again(
        self, sweeper, gateway, repository, make_subscription
    ):
        # Arrange: a first sweep renews, a second one still holds the old row
        stale = await make_subscription()
        first = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        async def find_stale(*args, **kwargs):
            return [stale]

        sweeper.repository.find_due_for_renewal = find_stale

        # Act
        second = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        # Assert
        assert first.renewed == 1
        assert second.renewed == 0
        assert second.skipped == 1
        assert len(gateway.charges) == 1
        assert await event_types(repository, stale.subscription_id) == [
            SubscriptionEventType.RENEWED
        ]
        current = await repository.get_subscription(stale.subscription_id)
        assert current.current_period_end == datetime(2025, 5, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_stale_snapshot_of_retried_past_due_is_not_charged_again(
        self, sweeper, gateway, repository, make_subscription
    ):
        stale = await make_subscription(
            status=SubscriptionStatus.PAST_DUE, failed_payment_count=1, next_billing_date=PERIOD_END
        )
        gateway.decline_reason = "insufficient_funds"
        await sweeper.process_subscription_renewals(AFTER_PERIOD)

        async def find_stale(*args, **kwargs):
            return [stale]

        sweeper.repository.find_due_for_renewal = find_stale
        result = await sweeper.process_subscription_renewals(AFTER_PERIOD)

        assert result.skipped == 1
        assert len(gateway.charges) == 1
        current = await repository.get_subscription(stale.subscription_id)
        assert current.failed_payment_count == 2


class TestExpiry:
    """Cancellation and expiry at the period boundary."""

    @pytest.mark.asyncio
    async def test_scheduled_cancel_takes_two_sweeps(
        self, sweeper, repository, make_subscription
    ):
        subscription = await make_subscription(cancel_at_period_end=True)

        first = await sweeper.process_expired_subscriptions(AFTER_PERIOD)
        canceled = await repository.get_subscription(subscription.subscription_id)

        assert first.canceled == 1
        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.cancel_at_period_end is False
        assert canceled.auto_renewal is False

        second = await sweeper.process_expired_subscriptions(AFTER_PERIOD)
        expired = await repository.get_subscription(subscription.subscription_id)

        assert second.expired == 1
        assert expired.status == SubscriptionStatus.EXPIRED
        assert expired.ended_at == AFTER_PERIOD
        assert await event_types(repository, subscription.subscription_id) == [
            SubscriptionEventType.CANCELED,
            SubscriptionEventType.EXPIRED,
        ]

    @pytest.mark.asyncio
    async def test_scheduled_cancel_is_never_renewed(self, sweeper, gateway, make_subscription):
        await make_subscription(cancel_at_period_end=True)

        result = await sweeper.run(AFTER_PERIOD)

        assert gateway.charges == []
        assert result.canceled == 1
        assert result.renewed == 0

    @pytest.mark.asyncio
    async def test_auto_renewal_off_expires(self, sweeper, repository, make_subscription):
        subscription = await make_subscription(auto_renewal=False)

        result = await sweeper.process_expired_subscriptions(AFTER_PERIOD)

        assert result.expired == 1
        expired = await repository.get_subscription(subscription.subscription_id)
        assert expired.status == SubscriptionStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_trial_without_card_expires(self, sweeper, repository, make_subscription):
        subscription = await make_subscription(
            status=SubscriptionStatus.TRIALING,
            payment_method_id=None,
            trial_end=PERIOD_END,
        )

        result = await sweeper.run(AFTER_PERIOD)

        assert result.expired == 1
        assert (await repository.get_subscription(subscription.subscription_id)).status == (
            SubscriptionStatus.EXPIRED
        )

    @pytest.mark.asyncio
    async def test_renewing_subscription_is_not_expired(self, sweeper, make_subscription):
        await make_subscription()

        result = await sweeper.process_expired_subscriptions(AFTER_PERIOD)

        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_exhausted_past_due_expires_after_grace(
        self, sweeper, repository, make_subscription
    ):
        subscription = await make_subscription(
            status=SubscriptionStatus.PAST_DUE, failed_payment_count=3, auto_renewal=False
        )

        within_grace = await sweeper.process_expired_subscriptions(PERIOD_END + timedelta(days=29))
        after_grace = await sweeper.process_expired_subscriptions(PERIOD_END + timedelta(days=31))

        assert within_grace.processed == 0
        assert after_grace.expired == 1
        expired = await repository.get_subscription(subscription.subscription_id)
        assert expired.status == SubscriptionStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_past_due_with_retries_left_is_kept(self, sweeper, make_subscription):
        await make_subscription(status=SubscriptionStatus.PAST_DUE, failed_payment_count=1)

        result = await sweeper.process_expired_subscriptions(PERIOD_END + timedelta(days=40))

        assert result.processed == 0


class TestNotifications:
    """Trial ending notices and renewal reminders."""

    @pytest.mark.asyncio
    async def test_trial_ending_notice(self, sweeper, clock, notifier, make_subscription):
        ending = clock() + timedelta(days=2)
        subscription = await make_subscription(
            status=SubscriptionStatus.TRIALING,
            period_start=clock() - timedelta(days=12),
            period_end=ending,
            trial_end=ending,
        )

        result = await sweeper.send_trial_ending_notifications()

        assert result.notified == 1
        assert notifier.sent == [("trial_ending", subscription.subscription_id)]

    @pytest.mark.asyncio
    async def test_failed_notice_is_counted(self, sweeper, clock, notifier, make_subscription):
        ending = clock() + timedelta(days=1)
        await make_subscription(
            status=SubscriptionStatus.TRIALING,
            period_start=clock() - timedelta(days=13),
            period_end=ending,
            trial_end=ending,
        )
        notifier.fail = True

        result = await sweeper.send_trial_ending_notifications(days=3)

        assert result.notified == 0
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_renewal_reminder_for_non_renewing(
        self, sweeper, clock, notifier, make_subscription
    ):
        ending = clock() + timedelta(days=2)
        reminded = await make_subscription(auto_renewal=False, period_end=ending)
        await make_subscription(business_id="biz-002", period_end=ending)

        result = await sweeper.send_renewal_reminders()

        assert result.notified == 1
        assert notifier.sent == [("renewal_reminder", reminded.subscription_id)]
