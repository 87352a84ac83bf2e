"""
Tests for the proration calculator.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from randevu.platform.billing.exceptions import BillingValidationError
from randevu.platform.billing.subscriptions.models import ChangeType, SubscriptionPlan
from randevu.platform.billing.subscriptions.proration import (
    calculate_proration,
    classify_change,
    remaining_fraction,
)

PERIOD_START = datetime(2025, 3, 1, tzinfo=UTC)
PERIOD_END = datetime(2025, 4, 1, tzinfo=UTC)
HALFWAY = PERIOD_START + (PERIOD_END - PERIOD_START) / 2


def make_plan(plan_id: str, price: str, currency: str = "TRY") -> SubscriptionPlan:
    return SubscriptionPlan(
        plan_id=plan_id,
        name=plan_id,
        display_name=plan_id.title(),
        price=Decimal(price),
        currency=currency,
    )


class TestCalculateProration:
    """Credit and charge for mid-period plan changes."""

    def test_half_period_upgrade_charges_half_the_difference(self):
        """100 -> 200 at the halfway point owes 50."""
        result = calculate_proration(
            make_plan("basic", "100"), make_plan("pro", "200"), PERIOD_START, PERIOD_END, HALFWAY
        )

        assert result.credit_amount == Decimal("50.00")
        assert result.charge_amount == Decimal("100.00")
        assert result.net_amount == Decimal("50.00")
        assert result.remaining_fraction == Decimal("0.500000")
        assert result.currency == "TRY"

    def test_downgrade_produces_negative_net(self):
        result = calculate_proration(
            make_plan("pro", "200"), make_plan("basic", "100"), PERIOD_START, PERIOD_END, HALFWAY
        )

        assert result.net_amount == Decimal("-50.00")

    @pytest.mark.parametrize("days_in", [0, 3, 10, 17, 29])
    def test_swapping_plans_negates_net(self, days_in):
        now = PERIOD_START + timedelta(days=days_in, hours=7)
        starter = make_plan("starter", "750")
        professional = make_plan("professional", "1250")

        forward = calculate_proration(starter, professional, PERIOD_START, PERIOD_END, now)
        backward = calculate_proration(professional, starter, PERIOD_START, PERIOD_END, now)

        assert forward.net_amount == -backward.net_amount

    @pytest.mark.parametrize(
        "now", [PERIOD_END, PERIOD_END + timedelta(seconds=1), PERIOD_END + timedelta(days=40)]
    )
    def test_zero_at_or_after_period_end(self, now):
        result = calculate_proration(
            make_plan("basic", "100"), make_plan("pro", "200"), PERIOD_START, PERIOD_END, now
        )

        assert result.credit_amount == Decimal("0")
        assert result.charge_amount == Decimal("0")
        assert result.net_amount == Decimal("0")
        assert result.days_remaining == 0

    def test_before_period_start_prorates_the_whole_period(self):
        result = calculate_proration(
            make_plan("basic", "100"),
            make_plan("pro", "200"),
            PERIOD_START,
            PERIOD_END,
            PERIOD_START - timedelta(days=2),
        )

        assert result.remaining_fraction == Decimal("1.000000")
        assert result.net_amount == Decimal("100.00")
        assert result.days_remaining == 31

    def test_amounts_round_half_up_to_minor_unit(self):
        # one third of the period left: 100 / 3 = 33.333..., 200 / 3 = 66.666...
        period_end = PERIOD_START + timedelta(days=3)
        now = PERIOD_START + timedelta(days=2)

        result = calculate_proration(
            make_plan("basic", "100"), make_plan("pro", "200"), PERIOD_START, period_end, now
        )

        assert result.credit_amount == Decimal("33.33")
        assert result.charge_amount == Decimal("66.67")
        assert result.net_amount == Decimal("33.34")
        assert result.days_remaining == 1

    def test_same_inputs_same_result(self):
        args = (make_plan("a", "99.99"), make_plan("b", "149.99"), PERIOD_START, PERIOD_END, HALFWAY)

        assert calculate_proration(*args) == calculate_proration(*args)

    def test_currency_mismatch_rejected(self):
        with pytest.raises(BillingValidationError) as exc_info:
            calculate_proration(
                make_plan("try", "100", "TRY"),
                make_plan("usd", "100", "USD"),
                PERIOD_START,
                PERIOD_END,
                HALFWAY,
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.context["new_currency"] == "USD"

    def test_empty_period_rejected(self):
        with pytest.raises(BillingValidationError):
            remaining_fraction(PERIOD_START, PERIOD_START, PERIOD_START)


class TestClassifyChange:
    """Change direction is decided by price alone."""

    def test_classification(self):
        starter = make_plan("starter", "750")
        professional = make_plan("professional", "1250")

        assert classify_change(starter, professional) == ChangeType.UPGRADE
        assert classify_change(professional, starter) == ChangeType.DOWNGRADE
        assert classify_change(starter, make_plan("other", "750")) == ChangeType.SAME
