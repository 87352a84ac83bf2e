"""
Subscription domain models.

Pydantic value objects returned by the repository and services, plus the
request DTOs validated at the HTTP boundary.
"""

import calendar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from randevu.platform.billing.money_utils import is_valid_currency

UNLIMITED = -1


class BillingInterval(str, Enum):
    """Plan billing intervals."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


# States a business can still be billed or served under
LIVE_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)


class SubscriptionEventType(str, Enum):
    """Subscription audit event types."""

    CREATED = "subscription.created"
    TRIAL_STARTED = "subscription.trial_started"
    TRIAL_CONVERTED = "subscription.trial_converted"
    PLAN_CHANGED = "subscription.plan_changed"
    PLAN_CHANGE_SCHEDULED = "subscription.plan_change_scheduled"
    CANCEL_SCHEDULED = "subscription.cancel_scheduled"
    CANCELED = "subscription.canceled"
    REACTIVATED = "subscription.reactivated"
    RENEWED = "subscription.renewed"
    PAYMENT_FAILED = "subscription.payment_failed"
    EXPIRED = "subscription.expired"
    AUTO_RENEWAL_UPDATED = "subscription.auto_renewal_updated"
    PAYMENT_METHOD_UPDATED = "subscription.payment_method_updated"
    STATUS_OVERRIDDEN = "subscription.status_overridden"


class ChangeType(str, Enum):
    """Plan change direction, classified by price."""

    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SAME = "same"


class ChangeEffective(str, Enum):
    """When a plan change takes effect."""

    IMMEDIATE = "immediate"
    PERIOD_END = "period_end"


class DiscountType(str, Enum):
    """How a discount code reduces a charge."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class UsageResource(str, Enum):
    """Countable resources limited by a plan."""

    STAFF = "staff"
    SERVICES = "services"
    CUSTOMERS = "customers"
    SMS = "sms"


def add_billing_interval(moment: datetime, interval: BillingInterval, count: int = 1) -> datetime:
    """Advance ``moment`` by whole calendar months or years, clamping the day."""
    months = count * (12 if interval == BillingInterval.YEARLY else 1)
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def utcnow() -> datetime:
    """Default clock for services and the sweeper."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SubscriptionBaseModel(BaseModel):
    """Shared configuration for subscription value objects."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _datetimes_as_utc(cls, v: Any) -> Any:
        # SQLite hands back naive datetimes
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v


# ========================================
# Plans
# ========================================


class PlanLimits(SubscriptionBaseModel):
    """Plan quotas. ``-1`` means unlimited."""

    max_staff: int = Field(UNLIMITED, ge=UNLIMITED)
    max_services: int = Field(UNLIMITED, ge=UNLIMITED)
    max_customers: int = Field(UNLIMITED, ge=UNLIMITED)
    sms_quota: int = Field(UNLIMITED, ge=UNLIMITED, description="SMS per billing period")
    max_sms_per_day: int = Field(UNLIMITED, ge=UNLIMITED)
    max_appointments_per_day: int = Field(UNLIMITED, ge=UNLIMITED)

    def limit_for(self, resource: UsageResource) -> int:
        """Return the quota that bounds the count of ``resource``."""
        return {
            UsageResource.STAFF: self.max_staff,
            UsageResource.SERVICES: self.max_services,
            UsageResource.CUSTOMERS: self.max_customers,
            UsageResource.SMS: self.sms_quota,
        }[resource]


class LocationHint(SubscriptionBaseModel):
    """Caller location used for location-based pricing."""

    city: str | None = None
    state: str | None = None
    country: str | None = None


class LocationPricing(SubscriptionBaseModel):
    """Location price applied to a plan copy."""

    base_price: Decimal
    location_price: Decimal
    multiplier: Decimal
    tier: str
    city: str
    state: str
    country: str


class SubscriptionPlan(SubscriptionBaseModel):
    """Subscription plan definition."""

    plan_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100, description="Stable plan code")
    display_name: str
    description: str | None = None

    price: Decimal = Field(ge=0)
    currency: str = Field("TRY", min_length=3, max_length=3)
    billing_interval: BillingInterval = BillingInterval.MONTHLY

    limits: PlanLimits = Field(default_factory=PlanLimits)
    features: dict[str, Any] = Field(default_factory=dict)
    trial_days: int = Field(0, ge=0, le=365)

    version: int = Field(1, ge=1)
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0

    location_pricing: LocationPricing | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("currency")
    @classmethod
    def normalise_currency(cls, v: str) -> str:
        if not is_valid_currency(v):
            raise ValueError(f"Unknown currency code: {v}")
        return v.upper()

    def has_trial(self) -> bool:
        return self.trial_days > 0

    @property
    def effective_price(self) -> Decimal:
        """Location price on a priced copy, else the base price. Charges use ``price``."""
        if self.location_pricing is not None:
            return self.location_pricing.location_price
        return self.price


# ========================================
# Subscriptions
# ========================================


class Subscription(SubscriptionBaseModel):
    """A business subscription, current or historical."""

    subscription_id: str
    business_id: str
    plan_id: str
    status: SubscriptionStatus

    current_period_start: datetime
    current_period_end: datetime
    next_billing_date: datetime | None = None

    trial_start: datetime | None = None
    trial_end: datetime | None = None

    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    ended_at: datetime | None = None

    auto_renewal: bool = True
    payment_method_id: str | None = None
    failed_payment_count: int = Field(0, ge=0)
    scheduled_plan_id: str | None = None
    is_current: bool = True

    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def check_period(self) -> "Subscription":
        if self.current_period_end <= self.current_period_start:
            raise ValueError("current_period_end must be after current_period_start")
        return self


class PaymentMethod(SubscriptionBaseModel):
    """Stored payment method with masked card data."""

    payment_method_id: str
    business_id: str
    last_four_digits: str = Field(pattern=r"^\d{4}$")
    card_brand: str
    expiry_month: int = Field(ge=1, le=12)
    expiry_year: int = Field(ge=2000)
    is_default: bool = False
    is_active: bool = True

    @property
    def masked_number(self) -> str:
        return f"**** **** **** {self.last_four_digits}"

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return (self.expiry_year, self.expiry_month) < (now.year, now.month)


class SubscriptionEvent(SubscriptionBaseModel):
    """Audit trail entry written alongside a lifecycle transition."""

    event_id: str
    subscription_id: str
    business_id: str
    event_type: SubscriptionEventType
    event_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ========================================
# Discount codes
# ========================================


class DiscountCode(SubscriptionBaseModel):
    """Promotional code taken off the first charge of a subscription.

    ``applicable_plans`` holds plan names; an empty list means every plan.
    ``max_usages`` of None means unlimited redemptions.
    """

    code: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_purchase_amount: Decimal | None = Field(None, ge=0)
    applicable_plans: list[str] = Field(default_factory=list)
    valid_from: datetime
    valid_until: datetime | None = None
    max_usages: int | None = Field(None, ge=1)
    current_usages: int = Field(0, ge=0)
    is_active: bool = True
    created_at: datetime | None = None

    @field_validator("code")
    @classmethod
    def normalise_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_bounds(self) -> "DiscountCode":
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        if self.valid_until is not None and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self

    def applies_to(self, plan_name: str) -> bool:
        return not self.applicable_plans or plan_name in self.applicable_plans


class DiscountQuote(SubscriptionBaseModel):
    """A discount code priced against one charge."""

    code: str
    discount_type: DiscountType
    discount_value: Decimal
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    currency: str


# ========================================
# Proration and plan changes
# ========================================


class ProrationResult(SubscriptionBaseModel):
    """Credit and charge owed for a mid-period plan change.

    ``net_amount`` is positive when the business owes money and negative
    when it is owed a credit.
    """

    credit_amount: Decimal
    charge_amount: Decimal
    net_amount: Decimal
    remaining_fraction: Decimal
    days_remaining: int
    currency: str
    description: str = ""


class PlanChangePreview(SubscriptionBaseModel):
    """What a plan change would cost, without applying it."""

    subscription_id: str
    current_plan_id: str
    new_plan_id: str
    change_type: ChangeType
    effective: ChangeEffective
    current_price: Decimal
    new_price: Decimal
    proration: ProrationResult
    interval_changed: bool = False
    effective_date: datetime


class PlanChangeResult(SubscriptionBaseModel):
    """Outcome of an applied or scheduled plan change."""

    subscription: Subscription
    preview: PlanChangePreview
    transaction_id: str | None = None


# ========================================
# Usage
# ========================================


class UsageCheck(SubscriptionBaseModel):
    """Result of a quota check for one resource."""

    resource: UsageResource
    allowed: bool
    current_count: int
    limit: int
    reason: str | None = None


class ResourceUsage(SubscriptionBaseModel):
    """Usage of one resource against its plan limit."""

    resource: UsageResource
    current_count: int
    limit: int
    unlimited: bool
    percentage: float | None = None
    near_limit: bool = False


class UsageSummary(SubscriptionBaseModel):
    """Snapshot of all plan-limited resources for a business."""

    business_id: str
    plan_id: str
    period_start: datetime
    resources: list[ResourceUsage]
    sms_sent_today: int
    max_sms_per_day: int


class PaymentMethodSummary(SubscriptionBaseModel):
    """Masked payment method details safe to return to clients."""

    payment_method_id: str
    card_brand: str
    last_four_digits: str
    masked_number: str
    expiry_month: int
    expiry_year: int
    is_default: bool = False


class AutoRenewalStatus(SubscriptionBaseModel):
    """Auto-renewal settings for a business's current subscription."""

    subscription_id: str
    auto_renewal: bool
    next_billing_date: datetime | None
    current_period_end: datetime
    cancel_at_period_end: bool
    payment_method: PaymentMethodSummary | None = None


class BusinessSubscription(SubscriptionBaseModel):
    """Current subscription together with its plan."""

    subscription: Subscription
    plan: SubscriptionPlan


class SubscriptionPage(SubscriptionBaseModel):
    """One page of a subscription listing."""

    items: list[Subscription]
    total: int
    page: int
    page_size: int


class SweepResult(SubscriptionBaseModel):
    """Counters accumulated by one sweeper pass."""

    processed: int = 0
    renewed: int = 0
    failed: int = 0
    canceled: int = 0
    expired: int = 0
    past_due: int = 0
    skipped: int = 0
    notified: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: "SweepResult") -> "SweepResult":
        """Combine two results into a new one."""
        counters = {
            name: getattr(self, name) + getattr(other, name)
            for name in (
                "processed",
                "renewed",
                "failed",
                "canceled",
                "expired",
                "past_due",
                "skipped",
                "notified",
            )
        }
        return SweepResult(**counters, errors=[*self.errors, *other.errors])


class SubscriptionStats(SubscriptionBaseModel):
    """Counts of current subscriptions."""

    total: int
    by_status: dict[str, int]
    by_plan: dict[str, int]


# ========================================
# Request DTOs
# ========================================


class SubscribeRequest(SubscriptionBaseModel):
    """Sign a business up for a plan."""

    plan_id: str = Field(min_length=1, max_length=50)
    payment_method_id: str | None = Field(None, max_length=128)
    auto_renewal: bool = True
    discount_code: str | None = Field(None, max_length=50)
    metadata: dict[str, Any] = Field(default_factory=dict)


class PlanChangeRequest(SubscriptionBaseModel):
    """Move a subscription to another plan."""

    new_plan_id: str = Field(min_length=1, max_length=50)
    effective: ChangeEffective = ChangeEffective.IMMEDIATE


class CancelRequest(SubscriptionBaseModel):
    """Cancel a subscription now or at period end."""

    cancel_at_period_end: bool = True
    reason: str | None = Field(None, max_length=500)


class ConvertTrialRequest(SubscriptionBaseModel):
    """Convert a trial into a paid subscription."""

    payment_method_id: str = Field(min_length=1, max_length=128)


class AutoRenewalUpdateRequest(SubscriptionBaseModel):
    """Toggle auto-renewal, optionally attaching a payment method."""

    auto_renewal: bool
    payment_method_id: str | None = Field(None, max_length=128)


class PaymentMethodUpdateRequest(SubscriptionBaseModel):
    """Attach a different payment method to the current subscription."""

    payment_method_id: str = Field(min_length=1, max_length=128)


class PaymentMethodCreateRequest(SubscriptionBaseModel):
    """Store a tokenised card. Only masked card data is accepted."""

    payment_method_id: str = Field(min_length=1, max_length=64)
    last_four_digits: str = Field(pattern=r"^\d{4}$")
    card_brand: str = Field(min_length=1, max_length=30)
    expiry_month: int = Field(ge=1, le=12)
    expiry_year: int = Field(ge=2000, le=2100)
    make_default: bool = False


class DiscountCodeCreateRequest(SubscriptionBaseModel):
    """Create a discount code."""

    code: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    description: str | None = Field(None, max_length=500)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_purchase_amount: Decimal | None = Field(None, ge=0)
    applicable_plans: list[str] = Field(default_factory=list)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_usages: int | None = Field(None, ge=1)


class DiscountValidationRequest(SubscriptionBaseModel):
    """Check a discount code against a plan before subscribing."""

    code: str = Field(min_length=1, max_length=50)
    plan_id: str = Field(min_length=1, max_length=50)
    business_id: str = Field(min_length=1, max_length=50)


class StatusOverrideRequest(SubscriptionBaseModel):
    """Force a subscription into a status, bypassing lifecycle rules."""

    status: SubscriptionStatus
    reason: str = Field(min_length=1, max_length=500)


__all__ = [
    "UNLIMITED",
    "LIVE_STATUSES",
    "BillingInterval",
    "SubscriptionStatus",
    "SubscriptionEventType",
    "ChangeType",
    "ChangeEffective",
    "DiscountType",
    "UsageResource",
    "add_billing_interval",
    "ensure_utc",
    "utcnow",
    "PlanLimits",
    "LocationHint",
    "LocationPricing",
    "SubscriptionPlan",
    "Subscription",
    "PaymentMethod",
    "SubscriptionEvent",
    "DiscountCode",
    "DiscountQuote",
    "ProrationResult",
    "PlanChangePreview",
    "PlanChangeResult",
    "UsageCheck",
    "ResourceUsage",
    "UsageSummary",
    "PaymentMethodSummary",
    "AutoRenewalStatus",
    "BusinessSubscription",
    "SubscriptionPage",
    "SweepResult",
    "SubscriptionStats",
    "SubscribeRequest",
    "PlanChangeRequest",
    "CancelRequest",
    "ConvertTrialRequest",
    "AutoRenewalUpdateRequest",
    "PaymentMethodUpdateRequest",
    "PaymentMethodCreateRequest",
    "DiscountCodeCreateRequest",
    "DiscountValidationRequest",
    "StatusOverrideRequest",
]
