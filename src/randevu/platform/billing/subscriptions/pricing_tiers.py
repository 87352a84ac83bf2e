"""
Location-based pricing tiers.

Cities are grouped into three tiers with a price multiplier each; any
city not listed falls into the lowest tier.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from randevu.platform.billing.money_utils import round_amount
from randevu.platform.billing.subscriptions.models import (
    LocationHint,
    LocationPricing,
    SubscriptionPlan,
)


class PricingTier(str, Enum):
    """City pricing tier."""

    TIER_1 = "TIER_1"
    TIER_2 = "TIER_2"
    TIER_3 = "TIER_3"


TIER_MULTIPLIERS: dict[PricingTier, Decimal] = {
    PricingTier.TIER_1: Decimal("2.0"),
    PricingTier.TIER_2: Decimal("1.5"),
    PricingTier.TIER_3: Decimal("1.0"),
}

TIER_1_CITIES = frozenset({"istanbul", "ankara", "izmir", "bursa", "antalya", "eskisehir"})

TIER_2_CITIES = frozenset(
    {
        "gaziantep",
        "konya",
        "diyarbakir",
        "samsun",
        "denizli",
        "kayseri",
        "mersin",
        "erzurum",
        "trabzon",
        "balikesir",
        "kahramanmaras",
        "van",
        "manisa",
        "sivas",
        "batman",
    }
)

# Turkish letters folded to their ASCII counterparts before lookup
_TURKISH_FOLD = str.maketrans(
    {
        "ı": "i",
        "İ": "i",
        "ş": "s",
        "Ş": "s",
        "ğ": "g",
        "Ğ": "g",
        "ü": "u",
        "Ü": "u",
        "ö": "o",
        "Ö": "o",
        "ç": "c",
        "Ç": "c",
    }
)


@dataclass(frozen=True)
class ResolvedLocation:
    """A location with every part filled in."""

    city: str
    state: str
    country: str


def normalize_city(city: str) -> str:
    """Normalise a city name for tier lookup."""
    return city.translate(_TURKISH_FOLD).strip().lower()


def get_city_tier(city: str | None) -> PricingTier:
    """Return the pricing tier of ``city``; unknown or empty cities are TIER_3."""
    if not city:
        return PricingTier.TIER_3
    key = normalize_city(city)
    if key in TIER_1_CITIES:
        return PricingTier.TIER_1
    if key in TIER_2_CITIES:
        return PricingTier.TIER_2
    return PricingTier.TIER_3


def resolve_location(
    hint: LocationHint | None,
    default_city: str = "Istanbul",
    default_state: str = "Istanbul",
    default_country: str = "Turkey",
) -> ResolvedLocation:
    """Fill missing parts of ``hint`` with the default location.

    When no city is known the whole default location is used so that a
    lone country never gets paired with the default city.
    """
    if hint is None or not (hint.city and hint.city.strip()):
        return ResolvedLocation(default_city, default_state, default_country)
    return ResolvedLocation(
        city=hint.city.strip(),
        state=(hint.state or hint.city).strip(),
        country=(hint.country or default_country).strip(),
    )


def calculate_location_price(base_price: Decimal, tier: PricingTier, currency: str) -> Decimal:
    """Apply the tier multiplier and round to the currency minor unit."""
    return round_amount(base_price * TIER_MULTIPLIERS[tier], currency)


def apply_location_pricing(
    plan: SubscriptionPlan, location: ResolvedLocation, home_currency: str = "TRY"
) -> SubscriptionPlan:
    """Return a copy of ``plan`` priced for ``location``.

    Plans billed in a currency other than ``home_currency`` are returned
    unchanged. The input plan is never modified.
    """
    if plan.currency != home_currency.upper():
        return plan

    tier = get_city_tier(location.city)
    pricing = LocationPricing(
        base_price=plan.price,
        location_price=calculate_location_price(plan.price, tier, plan.currency),
        multiplier=TIER_MULTIPLIERS[tier],
        tier=tier.value,
        city=location.city,
        state=location.state,
        country=location.country,
    )
    return plan.model_copy(update={"location_pricing": pricing})


__all__ = [
    "PricingTier",
    "TIER_MULTIPLIERS",
    "TIER_1_CITIES",
    "TIER_2_CITIES",
    "ResolvedLocation",
    "normalize_city",
    "get_city_tier",
    "resolve_location",
    "calculate_location_price",
    "apply_location_pricing",
]
