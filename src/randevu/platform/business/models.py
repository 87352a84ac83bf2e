"""
Business resource tables.

Only the columns needed to derive plan usage are modelled here: every
quota check counts live rows in these tables on demand.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from randevu.platform.db import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid4())


class BusinessTable(Base, TimestampMixin):
    """A tenant business that owns subscriptions and resources."""

    __tablename__ = "businesses"

    business_id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)


class StaffMemberTable(Base, TimestampMixin):
    """Staff member employed by a business."""

    __tablename__ = "business_staff"

    staff_id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_business_staff_business_active", "business_id", "is_active"),)


class ServiceOfferingTable(Base, TimestampMixin):
    """Bookable service offered by a business."""

    __tablename__ = "business_services"

    service_id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_business_services_business_active", "business_id", "is_active"),
    )


class CustomerTable(Base, TimestampMixin):
    """Customer record attached to a business."""

    __tablename__ = "business_customers"

    customer_id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_business_customers_business", "business_id"),)


class SmsMessageTable(Base):
    """One row per SMS sent on behalf of a business."""

    __tablename__ = "business_sms_messages"

    message_id: Mapped[str] = mapped_column(String(50), primary_key=True, default=_new_id)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient: Mapped[str] = mapped_column(String(32), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("ix_business_sms_business_sent", "business_id", "sent_at"),)


__all__ = [
    "BusinessTable",
    "StaffMemberTable",
    "ServiceOfferingTable",
    "CustomerTable",
    "SmsMessageTable",
]
