"""
Tests for the plan catalog.
"""

from decimal import Decimal

import pytest

from randevu.platform.billing.exceptions import BillingValidationError, PlanNotFoundError
from randevu.platform.billing.subscriptions.catalog import DEFAULT_PLANS
from randevu.platform.billing.subscriptions.models import BillingInterval, LocationHint


class TestPlanCatalog:
    """Plan lookups and location pricing."""

    @pytest.mark.asyncio
    async def test_default_plans_seeded_once(self, catalog):
        assert await catalog.ensure_default_plans() == 0

        plans = await catalog.get_all_plans()

        assert [plan.name for plan in plans] == ["starter", "professional", "enterprise"]
        assert len(plans) == len(DEFAULT_PLANS)

    @pytest.mark.asyncio
    async def test_all_plans_priced_for_default_location(self, catalog):
        """Without a location every plan is priced for Istanbul (tier 1)."""
        plans = await catalog.get_all_plans()

        starter = plans[0]
        assert starter.location_pricing is not None
        assert starter.location_pricing.city == "Istanbul"
        assert starter.location_pricing.location_price == Decimal("1500.00")
        assert starter.price == Decimal("750.00")

    @pytest.mark.asyncio
    async def test_plans_priced_for_given_location(self, catalog):
        plans = await catalog.get_all_plans(LocationHint(city="Rize", state="Rize"))

        assert plans[1].location_pricing.tier == "TIER_3"
        assert plans[1].effective_price == Decimal("1250.00")

    @pytest.mark.asyncio
    async def test_get_plan_by_id(self, catalog):
        plan = await catalog.get_plan_by_id("plan_professional_monthly")

        assert plan.trial_days == 14
        assert plan.is_popular is True
        assert plan.limits.max_staff == 10
        assert plan.location_pricing is None

    @pytest.mark.asyncio
    async def test_get_plan_by_id_with_location(self, catalog):
        plan = await catalog.get_plan_by_id(
            "plan_enterprise_monthly", LocationHint(city="Gaziantep")
        )
        assert plan.effective_price == Decimal("3000.00")

    @pytest.mark.asyncio
    async def test_unknown_plan(self, catalog):
        with pytest.raises(PlanNotFoundError) as exc_info:
            await catalog.get_plan_by_id("plan_missing")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_plans_by_interval(self, catalog, yearly_plan):
        monthly = await catalog.get_plans_by_billing_interval("MONTHLY")
        yearly = await catalog.get_plans_by_billing_interval(BillingInterval.YEARLY)

        assert len(monthly) == 3
        assert [plan.plan_id for plan in yearly] == [yearly_plan.plan_id]

    @pytest.mark.asyncio
    async def test_invalid_interval(self, catalog):
        with pytest.raises(BillingValidationError):
            await catalog.get_plans_by_billing_interval("weekly")


class TestPlanVersioning:
    """Price changes publish a new plan version."""

    @pytest.mark.asyncio
    async def test_publish_new_version_retires_old(self, catalog):
        new_plan = await catalog.publish_plan_version("plan_starter_monthly", Decimal("850.00"))

        assert new_plan.plan_id == "plan_starter_monthly_v2"
        assert new_plan.version == 2
        assert new_plan.price == Decimal("850.00")

        old_plan = await catalog.get_plan_by_id("plan_starter_monthly")
        assert old_plan.is_active is False
        assert old_plan.price == Decimal("750.00")

        active_ids = [plan.plan_id for plan in await catalog.get_all_plans()]
        assert "plan_starter_monthly" not in active_ids
        assert "plan_starter_monthly_v2" in active_ids

    @pytest.mark.asyncio
    async def test_retired_plan_cannot_be_subscribed(self, catalog):
        await catalog.publish_plan_version("plan_starter_monthly", Decimal("850.00"))

        with pytest.raises(PlanNotFoundError):
            await catalog.get_active_plan("plan_starter_monthly")

    @pytest.mark.asyncio
    async def test_retired_version_cannot_be_repriced(self, catalog):
        await catalog.publish_plan_version("plan_starter_monthly", Decimal("850.00"))

        with pytest.raises(BillingValidationError):
            await catalog.publish_plan_version("plan_starter_monthly", Decimal("900.00"))

    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, catalog):
        with pytest.raises(BillingValidationError):
            await catalog.publish_plan_version("plan_starter_monthly", Decimal("-1"))
