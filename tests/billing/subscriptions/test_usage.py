"""
Tests for plan usage limits.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import BUSINESS_ID, NOW
from randevu.platform.billing.exceptions import (
    SubscriptionNotFoundError,
    UsageLimitExceededError,
)
from randevu.platform.billing.subscriptions.models import (
    PlanLimits,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageResource,
)
from randevu.platform.billing.subscriptions.usage import build_check


class TestBuildCheck:
    """Quota arithmetic."""

    def test_at_limit_is_not_allowed(self):
        check = build_check(UsageResource.STAFF, current_count=5, limit=5)

        assert check.allowed is False
        assert check.reason is not None
        assert "5 of 5" in check.reason

    def test_below_limit_is_allowed(self):
        check = build_check(UsageResource.STAFF, current_count=4, limit=5)

        assert check.allowed is True
        assert check.reason is None

    def test_unlimited_always_allowed(self):
        assert build_check(UsageResource.CUSTOMERS, current_count=10**6, limit=-1).allowed is True

    def test_requested_count_is_included(self):
        assert build_check(UsageResource.SMS, current_count=990, limit=1000, requested=11).allowed is False


class TestUsageLimitValidator:
    """Checks against live counts."""

    @pytest.mark.asyncio
    async def test_no_subscription_denies(self, usage_validator):
        check = await usage_validator.can_add_staff_member(BUSINESS_ID)

        assert check.allowed is False
        assert check.reason == "No active subscription found"

    @pytest.mark.asyncio
    async def test_canceled_subscription_denies(self, usage_validator, make_subscription):
        await make_subscription(status=SubscriptionStatus.CANCELED)

        check = await usage_validator.can_add_service(BUSINESS_ID)

        assert check.allowed is False

    @pytest.mark.asyncio
    async def test_staff_limit_reached(self, usage_validator, make_subscription, add_business_rows):
        """Starter allows 3 staff; inactive staff do not count."""
        await make_subscription()
        await add_business_rows(staff=3, inactive_staff=2)

        check = await usage_validator.can_add_staff_member(BUSINESS_ID)

        assert check.allowed is False
        assert check.current_count == 3
        assert check.limit == 3

    @pytest.mark.asyncio
    async def test_services_and_customers_within_limits(
        self, usage_validator, make_subscription, add_business_rows
    ):
        await make_subscription()
        await add_business_rows(services=14, customers=20)

        assert (await usage_validator.can_add_service(BUSINESS_ID)).allowed is True
        assert (await usage_validator.can_add_customer(BUSINESS_ID)).allowed is True

    @pytest.mark.asyncio
    async def test_other_business_rows_not_counted(
        self, usage_validator, make_subscription, add_business_rows
    ):
        await make_subscription()
        await add_business_rows(business_id="biz-other", staff=10)

        check = await usage_validator.can_add_staff_member(BUSINESS_ID)

        assert check.allowed is True
        assert check.current_count == 0

    @pytest.mark.asyncio
    async def test_sms_counts_current_period_only(
        self, usage_validator, make_subscription, add_business_rows
    ):
        subscription = await make_subscription()
        await add_business_rows(sms=5, sms_sent_at=subscription.current_period_start - timedelta(days=1))
        await add_business_rows(sms=2)

        check = await usage_validator.can_send_sms(BUSINESS_ID)

        assert check.allowed is True
        assert check.current_count == 2
        assert check.limit == 1000

    @pytest.mark.asyncio
    async def test_sms_daily_cap_reported_first(
        self, repository, catalog, usage_validator, make_subscription, add_business_rows
    ):
        async with repository.transaction():
            await repository.add_plan(
                SubscriptionPlan(
                    plan_id="plan_capped",
                    name="capped",
                    display_name="Capped",
                    price=Decimal("100"),
                    limits=PlanLimits(sms_quota=100, max_sms_per_day=3),
                )
            )
        await make_subscription(plan_id="plan_capped")
        await add_business_rows(sms=3, sms_sent_at=NOW - timedelta(hours=1))
        await add_business_rows(sms=1, sms_sent_at=NOW - timedelta(days=1))

        check = await usage_validator.can_send_sms(BUSINESS_ID)

        assert check.allowed is False
        assert check.limit == 3
        assert "Daily SMS limit" in check.reason

    @pytest.mark.asyncio
    async def test_enforce_raises(self, usage_validator, make_subscription, add_business_rows):
        await make_subscription()
        await add_business_rows(staff=3)

        with pytest.raises(UsageLimitExceededError) as exc_info:
            await usage_validator.enforce(BUSINESS_ID, UsageResource.STAFF)

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_usage_summary_flags_near_limit(
        self, usage_validator, make_subscription, add_business_rows
    ):
        await make_subscription()
        await add_business_rows(staff=3, services=6, customers=800)

        summary = await usage_validator.get_usage_summary(BUSINESS_ID)
        by_resource = {usage.resource: usage for usage in summary.resources}

        assert summary.plan_id == "plan_starter_monthly"
        assert by_resource[UsageResource.STAFF].percentage == 100.0
        assert by_resource[UsageResource.STAFF].near_limit is True
        assert by_resource[UsageResource.SERVICES].percentage == 40.0
        assert by_resource[UsageResource.SERVICES].near_limit is False
        assert by_resource[UsageResource.CUSTOMERS].near_limit is True
        assert summary.max_sms_per_day == -1

    @pytest.mark.asyncio
    async def test_usage_summary_without_subscription(self, usage_validator):
        with pytest.raises(SubscriptionNotFoundError):
            await usage_validator.get_usage_summary(BUSINESS_ID)

    @pytest.mark.asyncio
    async def test_validate_plan_limits_lists_violations(
        self, usage_validator, catalog, make_subscription, add_business_rows
    ):
        await make_subscription(plan_id="plan_professional_monthly")
        await add_business_rows(staff=5, services=20)
        starter = await catalog.get_plan_by_id("plan_starter_monthly")

        violations = await usage_validator.validate_plan_limits(BUSINESS_ID, starter)

        assert len(violations) == 2
        assert any("staff members" in violation for violation in violations)
        assert any("services" in violation for violation in violations)
