"""
Tests for location-based pricing tiers.
"""

from decimal import Decimal

import pytest

from randevu.platform.billing.subscriptions.models import LocationHint, SubscriptionPlan
from randevu.platform.billing.subscriptions.pricing_tiers import (
    PricingTier,
    ResolvedLocation,
    apply_location_pricing,
    calculate_location_price,
    get_city_tier,
    resolve_location,
)


@pytest.fixture
def starter_plan():
    return SubscriptionPlan(
        plan_id="plan_starter_monthly",
        name="starter",
        display_name="Starter",
        price=Decimal("750.00"),
        currency="TRY",
    )


class TestCityTiers:
    """City to tier lookup."""

    @pytest.mark.parametrize(
        "city, tier",
        [
            ("Istanbul", PricingTier.TIER_1),
            ("İstanbul", PricingTier.TIER_1),
            ("  ANKARA ", PricingTier.TIER_1),
            ("Eskişehir", PricingTier.TIER_1),
            ("Gaziantep", PricingTier.TIER_2),
            ("Diyarbakır", PricingTier.TIER_2),
            ("Kahramanmaraş", PricingTier.TIER_2),
            ("Rize", PricingTier.TIER_3),
            ("", PricingTier.TIER_3),
            (None, PricingTier.TIER_3),
        ],
    )
    def test_get_city_tier(self, city, tier):
        assert get_city_tier(city) == tier

    def test_location_price_applies_multiplier(self):
        assert calculate_location_price(Decimal("750"), PricingTier.TIER_1, "TRY") == Decimal("1500.00")
        assert calculate_location_price(Decimal("750"), PricingTier.TIER_2, "TRY") == Decimal("1125.00")
        assert calculate_location_price(Decimal("750"), PricingTier.TIER_3, "TRY") == Decimal("750.00")


class TestResolveLocation:
    """Missing location parts come from the defaults."""

    def test_no_hint_uses_default_location(self):
        assert resolve_location(None) == ResolvedLocation("Istanbul", "Istanbul", "Turkey")

    def test_country_without_city_uses_whole_default(self):
        resolved = resolve_location(LocationHint(country="Germany"))
        assert resolved == ResolvedLocation("Istanbul", "Istanbul", "Turkey")

    def test_city_only_fills_state_and_country(self):
        resolved = resolve_location(LocationHint(city="Konya"))
        assert resolved == ResolvedLocation("Konya", "Konya", "Turkey")


class TestApplyLocationPricing:
    """Plans are priced on a copy."""

    def test_tier_two_city(self, starter_plan):
        priced = apply_location_pricing(starter_plan, ResolvedLocation("Konya", "Konya", "Turkey"))

        assert priced.location_pricing is not None
        assert priced.location_pricing.tier == "TIER_2"
        assert priced.location_pricing.location_price == Decimal("1125.00")
        assert priced.effective_price == Decimal("1125.00")
        assert priced.price == Decimal("750.00")
        assert starter_plan.location_pricing is None

    def test_foreign_currency_plan_unchanged(self):
        usd_plan = SubscriptionPlan(
            plan_id="plan_usd", name="usd", display_name="USD", price=Decimal("20"), currency="USD"
        )
        priced = apply_location_pricing(usd_plan, ResolvedLocation("Istanbul", "Istanbul", "Turkey"))

        assert priced.location_pricing is None
        assert priced.effective_price == Decimal("20")
