"""
Proration calculator.

Pure functions: no I/O and no clock reads, so identical inputs always give
identical results.
"""

import math
from datetime import datetime
from decimal import Decimal

from randevu.platform.billing.exceptions import BillingValidationError
from randevu.platform.billing.money_utils import round_amount
from randevu.platform.billing.subscriptions.models import (
    ChangeType,
    ProrationResult,
    SubscriptionPlan,
    ensure_utc,
)

_SECONDS_PER_DAY = 86400
_FRACTION_PLACES = Decimal("0.000001")


def classify_change(current_plan: SubscriptionPlan, new_plan: SubscriptionPlan) -> ChangeType:
    """Classify a plan change by comparing prices."""
    if new_plan.price > current_plan.price:
        return ChangeType.UPGRADE
    if new_plan.price < current_plan.price:
        return ChangeType.DOWNGRADE
    return ChangeType.SAME


def remaining_fraction(
    current_period_start: datetime, current_period_end: datetime, now: datetime
) -> Decimal:
    """Unused share of the period, clamped to [0, 1]."""
    start = ensure_utc(current_period_start)
    end = ensure_utc(current_period_end)
    now = ensure_utc(now)

    total = Decimal(str((end - start).total_seconds()))
    if total <= 0:
        raise BillingValidationError(
            "Billing period end must be after its start", field="current_period_end"
        )
    if now >= end:
        return Decimal("0")
    if now <= start:
        return Decimal("1")
    return Decimal(str((end - now).total_seconds())) / total


def calculate_proration(
    current_plan: SubscriptionPlan,
    new_plan: SubscriptionPlan,
    current_period_start: datetime,
    current_period_end: datetime,
    now: datetime,
) -> ProrationResult:
    """
    Compute the credit and charge for switching plans at ``now``.

    The unused share of the current plan is credited and the same share of
    the new plan is charged, each rounded half-up to the currency minor
    unit. ``net_amount = charge - credit``: positive means the business
    owes money, negative means it is owed a credit.

    Raises:
        BillingValidationError: plans are in different currencies or the
            period is empty.
    """
    if current_plan.currency != new_plan.currency:
        raise BillingValidationError(
            "Cannot prorate between plans in different currencies",
            field="currency",
            context={
                "current_currency": current_plan.currency,
                "new_currency": new_plan.currency,
            },
        )

    currency = current_plan.currency
    fraction = remaining_fraction(current_period_start, current_period_end, now)

    if fraction == 0:
        zero = round_amount(Decimal("0"), currency)
        return ProrationResult(
            credit_amount=zero,
            charge_amount=zero,
            net_amount=zero,
            remaining_fraction=Decimal("0"),
            days_remaining=0,
            currency=currency,
            description="Billing period has ended; no proration applies",
        )

    credit = round_amount(current_plan.price * fraction, currency)
    charge = round_amount(new_plan.price * fraction, currency)
    net = charge - credit

    remaining_seconds = (ensure_utc(current_period_end) - ensure_utc(now)).total_seconds()
    days_remaining = min(
        math.ceil(remaining_seconds / _SECONDS_PER_DAY),
        math.ceil(
            (ensure_utc(current_period_end) - ensure_utc(current_period_start)).total_seconds()
            / _SECONDS_PER_DAY
        ),
    )

    return ProrationResult(
        credit_amount=credit,
        charge_amount=charge,
        net_amount=net,
        remaining_fraction=fraction.quantize(_FRACTION_PLACES),
        days_remaining=days_remaining,
        currency=currency,
        description=(
            f"{days_remaining} days remaining: credit {credit} {currency} for "
            f"{current_plan.display_name}, charge {charge} {currency} for {new_plan.display_name}"
        ),
    )


__all__ = ["calculate_proration", "classify_change", "remaining_fraction"]
