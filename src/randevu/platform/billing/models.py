"""
Base billing database tables.

Provides the persisted records behind plans, subscriptions, payment
methods, discount codes and the subscription audit trail.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from randevu.platform.db import Base


class BillingSQLModel(Base):
    """Base SQLAlchemy model for billing tables."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )


class BillingSubscriptionPlanTable(BillingSQLModel):
    """SQLAlchemy table for subscription plans.

    Rows are versioned: a price change inserts a new row and deactivates
    the previous one, so subscriptions keep pointing at the price they
    signed up for.
    """

    __tablename__ = "billing_subscription_plans"

    # Primary key
    plan_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Plan details
    name: Mapped[str] = mapped_column(String(100), nullable=False)  # stable plan code
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Billing configuration
    billing_interval: Mapped[str] = mapped_column(String(20), nullable=False)  # monthly, yearly
    price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Quotas and feature flags (JSON)
    limits: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Versioning and display
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Indexes
    __table_args__ = (
        Index("ix_billing_plans_active_sort", "is_active", "sort_order"),
        Index("ix_billing_plans_name_version", "name", "version", unique=True),
        {"extend_existing": True},
    )


class BillingSubscriptionTable(BillingSQLModel):
    """SQLAlchemy table for business subscriptions."""

    __tablename__ = "billing_subscriptions"

    # Primary key
    subscription_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Owner and plan references
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)
    scheduled_plan_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # trialing, active, past_due, canceled, expired
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Current billing period
    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_billing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Trial information
    trial_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Renewal
    auto_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    failed_payment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Indexes
    __table_args__ = (
        Index("ix_billing_subscriptions_business", "business_id"),
        Index("ix_billing_subscriptions_status_period_end", "status", "current_period_end"),
        Index("ix_billing_subscriptions_plan", "plan_id"),
        Index(
            "uq_billing_subscriptions_current_business",
            "business_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        {"extend_existing": True},
    )


class BillingPaymentMethodTable(BillingSQLModel):
    """SQLAlchemy table for stored (masked) business payment methods."""

    __tablename__ = "billing_payment_methods"

    # Primary key
    payment_method_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    business_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Masked card data
    last_four_digits: Mapped[str] = mapped_column(String(4), nullable=False)
    card_brand: Mapped[str] = mapped_column(String(30), nullable=False)
    expiry_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_billing_payment_methods_business", "business_id", "is_active"),
        {"extend_existing": True},
    )


class BillingDiscountCodeTable(BillingSQLModel):
    """SQLAlchemy table for promotional discount codes."""

    __tablename__ = "billing_discount_codes"

    # Primary key (stored upper-case)
    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Discount
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)  # percentage, fixed
    discount_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    min_purchase_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    applicable_plans: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Validity
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_usages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_usages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = ({"extend_existing": True},)


class BillingDiscountCodeUsageTable(BillingSQLModel):
    """SQLAlchemy table for redeemed discount codes, one row per business and code."""

    __tablename__ = "billing_discount_code_usages"

    usage_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(50), nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    final_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    __table_args__ = (
        Index("uq_billing_discount_usages_code_business", "code", "business_id", unique=True),
        {"extend_existing": True},
    )


class BillingSubscriptionEventTable(BillingSQLModel):
    """SQLAlchemy table for subscription events (audit trail)."""

    __tablename__ = "billing_subscription_events"

    # Primary key
    event_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Related subscription
    subscription_id: Mapped[str] = mapped_column(String(50), nullable=False)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Event details
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    event_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Indexes
    __table_args__ = (
        Index("ix_billing_events_subscription", "subscription_id"),
        Index("ix_billing_events_business_type", "business_id", "event_type"),
        Index("ix_billing_events_created", "created_at"),
        {"extend_existing": True},
    )


__all__ = [
    "BillingSQLModel",
    "BillingSubscriptionPlanTable",
    "BillingSubscriptionTable",
    "BillingPaymentMethodTable",
    "BillingDiscountCodeTable",
    "BillingDiscountCodeUsageTable",
    "BillingSubscriptionEventTable",
]
