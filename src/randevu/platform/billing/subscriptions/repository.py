"""
Subscription store.

Repository interfaces consumed by the lifecycle manager, sweeper and usage
validator, plus their SQLAlchemy implementations. Every method returns
fully materialised pydantic value objects; ORM rows never leave this module.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from pydantic_core import to_jsonable_python
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from randevu.platform.billing.exceptions import (
    BillingSystemError,
    BillingValidationError,
    DiscountCodeConflictError,
    InvalidDiscountCodeError,
    PaymentMethodConflictError,
    SubscriptionConflictError,
)
from randevu.platform.billing.models import (
    BillingDiscountCodeTable,
    BillingDiscountCodeUsageTable,
    BillingPaymentMethodTable,
    BillingSubscriptionEventTable,
    BillingSubscriptionPlanTable,
    BillingSubscriptionTable,
)
from randevu.platform.billing.subscriptions.models import (
    BillingInterval,
    DiscountCode,
    DiscountQuote,
    PaymentMethod,
    Subscription,
    SubscriptionEvent,
    SubscriptionEventType,
    SubscriptionPlan,
    SubscriptionStatus,
)
from randevu.platform.business.models import (
    CustomerTable,
    ServiceOfferingTable,
    SmsMessageTable,
    StaffMemberTable,
)
from randevu.platform.logging import get_logger

logger = get_logger(__name__)

_SUBSCRIPTION_COLUMNS = (
    "subscription_id",
    "business_id",
    "plan_id",
    "status",
    "current_period_start",
    "current_period_end",
    "next_billing_date",
    "trial_start",
    "trial_end",
    "cancel_at_period_end",
    "canceled_at",
    "ended_at",
    "auto_renewal",
    "payment_method_id",
    "failed_payment_count",
    "scheduled_plan_id",
    "is_current",
    "created_at",
    "updated_at",
)


class SubscriptionRepository(Protocol):
    """Transactional store for plans, subscriptions, payment methods, discount codes and events."""

    def transaction(self) -> Any: ...

    async def get_plan(self, plan_id: str) -> SubscriptionPlan | None: ...

    async def list_plans(
        self, active_only: bool = True, interval: BillingInterval | None = None
    ) -> list[SubscriptionPlan]: ...

    async def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan: ...

    async def deactivate_plan(self, plan_id: str) -> None: ...

    async def get_subscription(self, subscription_id: str) -> Subscription | None: ...

    async def get_current_subscription(self, business_id: str) -> Subscription | None: ...

    async def list_business_subscriptions(self, business_id: str) -> list[Subscription]: ...

    async def list_subscriptions(
        self,
        status: SubscriptionStatus | None = None,
        plan_id: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Subscription], int]: ...

    async def add_subscription(self, subscription: Subscription) -> Subscription: ...

    async def demote_current(self, business_id: str) -> None: ...

    async def transition(
        self,
        subscription_id: str,
        expected_statuses: Iterable[SubscriptionStatus],
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Subscription | None: ...

    async def find_due_for_renewal(
        self, now: datetime, max_retry_attempts: int, limit: int = 500
    ) -> list[Subscription]: ...

    async def find_expiry_candidates(
        self, now: datetime, past_due_cutoff: datetime, max_retry_attempts: int, limit: int = 500
    ) -> list[Subscription]: ...

    async def find_trials_ending(self, start: datetime, end: datetime) -> list[Subscription]: ...

    async def find_periods_ending_without_renewal(
        self, start: datetime, end: datetime
    ) -> list[Subscription]: ...

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod | None: ...

    async def add_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod: ...

    async def list_payment_methods(self, business_id: str) -> list[PaymentMethod]: ...

    async def clear_default_payment_method(self, business_id: str) -> None: ...

    async def deactivate_payment_method(self, payment_method_id: str) -> None: ...

    async def get_discount_code(self, code: str) -> DiscountCode | None: ...

    async def add_discount_code(self, discount_code: DiscountCode) -> DiscountCode: ...

    async def has_redeemed_discount_code(self, code: str, business_id: str) -> bool: ...

    async def redeem_discount_code(
        self, quote: DiscountQuote, business_id: str, subscription_id: str
    ) -> bool: ...

    async def count_current_subscriptions(self, column: str) -> dict[str, int]: ...

    async def add_event(
        self,
        subscription: Subscription,
        event_type: SubscriptionEventType,
        event_data: dict[str, Any] | None = None,
    ) -> SubscriptionEvent: ...

    async def list_events(self, subscription_id: str) -> list[SubscriptionEvent]: ...


class UsageRepository(Protocol):
    """Live resource counts for a business."""

    async def count_active_staff(self, business_id: str) -> int: ...

    async def count_active_services(self, business_id: str) -> int: ...

    async def count_customers(self, business_id: str) -> int: ...

    async def count_sms_sent(self, business_id: str, since: datetime) -> int: ...


def _status_values(statuses: Iterable[SubscriptionStatus]) -> list[str]:
    return [SubscriptionStatus(s).value for s in statuses]


def _plan_from_row(row: BillingSubscriptionPlanTable) -> SubscriptionPlan:
    return SubscriptionPlan(
        plan_id=row.plan_id,
        name=row.name,
        display_name=row.display_name,
        description=row.description,
        price=row.price,
        currency=row.currency,
        billing_interval=row.billing_interval,
        limits=row.limits or {},
        features=row.features or {},
        trial_days=row.trial_days,
        version=row.version,
        is_active=row.is_active,
        is_popular=row.is_popular,
        sort_order=row.sort_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _subscription_from_row(row: BillingSubscriptionTable) -> Subscription:
    data = {name: getattr(row, name) for name in _SUBSCRIPTION_COLUMNS}
    data["metadata"] = row.metadata_json or {}
    return Subscription.model_validate(data)


def _event_from_row(row: BillingSubscriptionEventTable) -> SubscriptionEvent:
    return SubscriptionEvent(
        event_id=row.event_id,
        subscription_id=row.subscription_id,
        business_id=row.business_id,
        event_type=row.event_type,
        event_data=row.event_data or {},
        created_at=row.created_at,
    )


class SqlAlchemySubscriptionRepository:
    """SQLAlchemy implementation of :class:`SubscriptionRepository`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._depth = 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the block as one unit of work.

        Nested calls join the outer unit. Data store failures are rolled back
        and surface as :class:`BillingSystemError` without driver details.
        """
        if self._depth:
            yield
            return

        self._depth += 1
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("subscription.store.transaction_failed", error=str(exc), exc_info=True)
            raise BillingSystemError(operation="subscription_store") from exc
        except Exception:
            await self.session.rollback()
            raise
        finally:
            self._depth -= 1

    # ========================================
    # Plans
    # ========================================

    async def get_plan(self, plan_id: str) -> SubscriptionPlan | None:
        result = await self.session.execute(
            select(BillingSubscriptionPlanTable)
            .where(BillingSubscriptionPlanTable.plan_id == plan_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _plan_from_row(row) if row else None

    async def list_plans(
        self, active_only: bool = True, interval: BillingInterval | None = None
    ) -> list[SubscriptionPlan]:
        stmt = select(BillingSubscriptionPlanTable)
        if active_only:
            stmt = stmt.where(BillingSubscriptionPlanTable.is_active.is_(True))
        if interval is not None:
            stmt = stmt.where(BillingSubscriptionPlanTable.billing_interval == interval.value)
        stmt = stmt.order_by(
            BillingSubscriptionPlanTable.sort_order, BillingSubscriptionPlanTable.price
        )
        result = await self.session.execute(stmt)
        return [_plan_from_row(row) for row in result.scalars().all()]

    async def add_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        row = BillingSubscriptionPlanTable(
            plan_id=plan.plan_id,
            name=plan.name,
            display_name=plan.display_name,
            description=plan.description,
            billing_interval=plan.billing_interval.value,
            price=plan.price,
            currency=plan.currency,
            trial_days=plan.trial_days,
            limits=plan.limits.model_dump(),
            features=to_jsonable_python(plan.features),
            version=plan.version,
            is_active=plan.is_active,
            is_popular=plan.is_popular,
            sort_order=plan.sort_order,
        )
        self.session.add(row)
        await self.session.flush()
        return _plan_from_row(row)

    async def deactivate_plan(self, plan_id: str) -> None:
        await self.session.execute(
            update(BillingSubscriptionPlanTable)
            .where(BillingSubscriptionPlanTable.plan_id == plan_id)
            .values(is_active=False, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

    # ========================================
    # Subscriptions
    # ========================================

    async def _select_subscriptions(self, stmt: Any) -> list[Subscription]:
        # Rows may have been changed by core UPDATEs; always refresh from the store
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [_subscription_from_row(row) for row in result.scalars().all()]

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        rows = await self._select_subscriptions(
            select(BillingSubscriptionTable).where(
                BillingSubscriptionTable.subscription_id == subscription_id
            )
        )
        return rows[0] if rows else None

    async def get_current_subscription(self, business_id: str) -> Subscription | None:
        rows = await self._select_subscriptions(
            select(BillingSubscriptionTable).where(
                BillingSubscriptionTable.business_id == business_id,
                BillingSubscriptionTable.is_current.is_(True),
            )
        )
        return rows[0] if rows else None

    async def list_business_subscriptions(self, business_id: str) -> list[Subscription]:
        return await self._select_subscriptions(
            select(BillingSubscriptionTable)
            .where(BillingSubscriptionTable.business_id == business_id)
            .order_by(BillingSubscriptionTable.created_at.desc())
        )

    async def list_subscriptions(
        self,
        status: SubscriptionStatus | None = None,
        plan_id: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Subscription], int]:
        conditions = []
        if status is not None:
            conditions.append(BillingSubscriptionTable.status == SubscriptionStatus(status).value)
        if plan_id is not None:
            conditions.append(BillingSubscriptionTable.plan_id == plan_id)

        total = await self.session.scalar(
            select(func.count()).select_from(BillingSubscriptionTable).where(*conditions)
        )
        items = await self._select_subscriptions(
            select(BillingSubscriptionTable)
            .where(*conditions)
            .order_by(
                BillingSubscriptionTable.created_at.desc(),
                BillingSubscriptionTable.subscription_id,
            )
            .offset(offset)
            .limit(limit)
        )
        return items, int(total or 0)

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        row = BillingSubscriptionTable(
            **{
                name: getattr(subscription, name)
                for name in _SUBSCRIPTION_COLUMNS
                if name not in ("status", "created_at", "updated_at")
            },
            status=subscription.status.value,
            metadata_json=to_jsonable_python(subscription.metadata),
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise SubscriptionConflictError(
                "Business already has a current subscription",
                subscription_id=subscription.subscription_id,
            ) from exc
        return _subscription_from_row(row)

    async def demote_current(self, business_id: str) -> None:
        """Move the business's current subscription to history."""
        await self.session.execute(
            update(BillingSubscriptionTable)
            .where(
                BillingSubscriptionTable.business_id == business_id,
                BillingSubscriptionTable.is_current.is_(True),
            )
            .values(is_current=False, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

    async def _check_period(self, subscription_id: str, changes: dict[str, Any]) -> None:
        if "current_period_start" not in changes and "current_period_end" not in changes:
            return
        start = changes.get("current_period_start")
        end = changes.get("current_period_end")
        if start is None or end is None:
            current = await self.get_subscription(subscription_id)
            if current is None:
                return
            start = start or current.current_period_start
            end = end or current.current_period_end
        if end <= start:
            raise BillingValidationError(
                "current_period_end must be after current_period_start",
                field="current_period_end",
                context={"subscription_id": subscription_id},
            )

    async def transition(
        self,
        subscription_id: str,
        expected_statuses: Iterable[SubscriptionStatus],
        changes: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Subscription | None:
        """Apply ``changes`` only if the row's status is still one of ``expected_statuses``.

        ``expected`` pins further columns to the values the caller read, so a
        writer holding a stale snapshot cannot apply the same change twice.
        Returns the updated subscription, or None when the row no longer
        matches (including when another writer got there first).
        """
        await self._check_period(subscription_id, changes)

        values = dict(changes)
        if "status" in values:
            values["status"] = SubscriptionStatus(values["status"]).value
        if "metadata" in values:
            values["metadata_json"] = to_jsonable_python(values.pop("metadata"))
        values["updated_at"] = datetime.now(UTC)

        conditions = [
            BillingSubscriptionTable.subscription_id == subscription_id,
            BillingSubscriptionTable.status.in_(_status_values(expected_statuses)),
        ]
        for name, value in (expected or {}).items():
            column = getattr(BillingSubscriptionTable, name)
            conditions.append(column.is_(None) if value is None else column == value)

        result = await self.session.execute(
            update(BillingSubscriptionTable)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None

        return await self.get_subscription(subscription_id)

    # ========================================
    # Sweeper queries
    # ========================================

    async def find_due_for_renewal(
        self, now: datetime, max_retry_attempts: int, limit: int = 500
    ) -> list[Subscription]:
        table = BillingSubscriptionTable
        stmt = (
            select(table)
            .where(
                table.is_current.is_(True),
                table.current_period_end <= now,
                or_(table.next_billing_date.is_(None), table.next_billing_date <= now),
                table.auto_renewal.is_(True),
                table.cancel_at_period_end.is_(False),
                or_(
                    table.status == SubscriptionStatus.ACTIVE.value,
                    and_(
                        table.status == SubscriptionStatus.TRIALING.value,
                        table.payment_method_id.is_not(None),
                    ),
                    and_(
                        table.status == SubscriptionStatus.PAST_DUE.value,
                        table.failed_payment_count < max_retry_attempts,
                    ),
                ),
            )
            .order_by(table.current_period_end)
            .limit(limit)
        )
        return await self._select_subscriptions(stmt)

    async def find_expiry_candidates(
        self, now: datetime, past_due_cutoff: datetime, max_retry_attempts: int, limit: int = 500
    ) -> list[Subscription]:
        table = BillingSubscriptionTable
        live = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)
        stmt = (
            select(table)
            .where(
                table.current_period_end <= now,
                or_(
                    and_(table.status.in_(live), table.cancel_at_period_end.is_(True)),
                    and_(table.status.in_(live), table.auto_renewal.is_(False)),
                    and_(
                        table.status == SubscriptionStatus.TRIALING.value,
                        table.payment_method_id.is_(None),
                    ),
                    table.status == SubscriptionStatus.CANCELED.value,
                    and_(
                        table.status == SubscriptionStatus.PAST_DUE.value,
                        or_(
                            table.failed_payment_count >= max_retry_attempts,
                            table.auto_renewal.is_(False),
                        ),
                        table.current_period_end <= past_due_cutoff,
                    ),
                ),
            )
            .order_by(table.current_period_end)
            .limit(limit)
        )
        return await self._select_subscriptions(stmt)

    async def find_trials_ending(self, start: datetime, end: datetime) -> list[Subscription]:
        table = BillingSubscriptionTable
        return await self._select_subscriptions(
            select(table)
            .where(
                table.is_current.is_(True),
                table.status == SubscriptionStatus.TRIALING.value,
                table.trial_end > start,
                table.trial_end <= end,
            )
            .order_by(table.trial_end)
        )

    async def find_periods_ending_without_renewal(
        self, start: datetime, end: datetime
    ) -> list[Subscription]:
        table = BillingSubscriptionTable
        return await self._select_subscriptions(
            select(table)
            .where(
                table.is_current.is_(True),
                table.status == SubscriptionStatus.ACTIVE.value,
                table.auto_renewal.is_(False),
                table.cancel_at_period_end.is_(False),
                table.current_period_end > start,
                table.current_period_end <= end,
            )
            .order_by(table.current_period_end)
        )

    # ========================================
    # Payment methods
    # ========================================

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod | None:
        result = await self.session.execute(
            select(BillingPaymentMethodTable)
            .where(BillingPaymentMethodTable.payment_method_id == payment_method_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return PaymentMethod.model_validate(row) if row else None

    async def add_payment_method(self, payment_method: PaymentMethod) -> PaymentMethod:
        row = BillingPaymentMethodTable(**payment_method.model_dump())
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise PaymentMethodConflictError(
                "Payment method is already stored",
                payment_method_id=payment_method.payment_method_id,
            ) from exc
        return PaymentMethod.model_validate(row)

    async def list_payment_methods(self, business_id: str) -> list[PaymentMethod]:
        """Active payment methods of a business, default first."""
        table = BillingPaymentMethodTable
        result = await self.session.execute(
            select(table)
            .where(table.business_id == business_id, table.is_active.is_(True))
            .order_by(table.is_default.desc(), table.created_at, table.payment_method_id)
            .execution_options(populate_existing=True)
        )
        return [PaymentMethod.model_validate(row) for row in result.scalars().all()]

    async def clear_default_payment_method(self, business_id: str) -> None:
        await self.session.execute(
            update(BillingPaymentMethodTable)
            .where(
                BillingPaymentMethodTable.business_id == business_id,
                BillingPaymentMethodTable.is_default.is_(True),
            )
            .values(is_default=False, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

    async def deactivate_payment_method(self, payment_method_id: str) -> None:
        """Soft delete: the row stays for the payment history."""
        await self.session.execute(
            update(BillingPaymentMethodTable)
            .where(BillingPaymentMethodTable.payment_method_id == payment_method_id)
            .values(is_active=False, is_default=False, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

    # ========================================
    # Discount codes
    # ========================================

    async def get_discount_code(self, code: str) -> DiscountCode | None:
        result = await self.session.execute(
            select(BillingDiscountCodeTable)
            .where(BillingDiscountCodeTable.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return DiscountCode.model_validate(row) if row else None

    async def add_discount_code(self, discount_code: DiscountCode) -> DiscountCode:
        row = BillingDiscountCodeTable(
            **discount_code.model_dump(exclude={"created_at", "discount_type"}),
            discount_type=discount_code.discount_type.value,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise DiscountCodeConflictError(
                f"Discount code {discount_code.code} already exists", code=discount_code.code
            ) from exc
        return DiscountCode.model_validate(row)

    async def has_redeemed_discount_code(self, code: str, business_id: str) -> bool:
        table = BillingDiscountCodeUsageTable
        count = await self.session.scalar(
            select(func.count())
            .select_from(table)
            .where(table.code == code, table.business_id == business_id)
        )
        return bool(count)

    async def redeem_discount_code(
        self, quote: DiscountQuote, business_id: str, subscription_id: str
    ) -> bool:
        """Take one use of ``quote.code`` and record who used it.

        Returns False when the code ran out of uses after it was validated.
        """
        table = BillingDiscountCodeTable
        result = await self.session.execute(
            update(table)
            .where(
                table.code == quote.code,
                table.is_active.is_(True),
                or_(table.max_usages.is_(None), table.current_usages < table.max_usages),
            )
            .values(current_usages=table.current_usages + 1, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False

        self.session.add(
            BillingDiscountCodeUsageTable(
                usage_id=str(uuid4()),
                code=quote.code,
                business_id=business_id,
                subscription_id=subscription_id,
                original_amount=quote.original_amount,
                discount_amount=quote.discount_amount,
                final_amount=quote.final_amount,
                currency=quote.currency,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise InvalidDiscountCodeError(
                "Discount code has already been used by this business",
                code=quote.code,
                reason="already_used",
            ) from exc
        return True

    # ========================================
    # Reporting
    # ========================================

    async def count_current_subscriptions(self, column: str) -> dict[str, int]:
        """Current subscriptions grouped by ``column`` (``status`` or ``plan_id``)."""
        if column not in ("status", "plan_id"):
            raise BillingValidationError(f"Cannot group subscriptions by {column}", field="column")
        group = getattr(BillingSubscriptionTable, column)
        result = await self.session.execute(
            select(group, func.count())
            .where(BillingSubscriptionTable.is_current.is_(True))
            .group_by(group)
            .order_by(group)
        )
        return {key: int(count) for key, count in result.all()}

    # ========================================
    # Events
    # ========================================

    async def add_event(
        self,
        subscription: Subscription,
        event_type: SubscriptionEventType,
        event_data: dict[str, Any] | None = None,
    ) -> SubscriptionEvent:
        row = BillingSubscriptionEventTable(
            event_id=str(uuid4()),
            subscription_id=subscription.subscription_id,
            business_id=subscription.business_id,
            event_type=SubscriptionEventType(event_type).value,
            event_data=to_jsonable_python(event_data or {}),
        )
        self.session.add(row)
        await self.session.flush()
        return _event_from_row(row)

    async def list_events(self, subscription_id: str) -> list[SubscriptionEvent]:
        result = await self.session.execute(
            select(BillingSubscriptionEventTable)
            .where(BillingSubscriptionEventTable.subscription_id == subscription_id)
            .order_by(BillingSubscriptionEventTable.created_at)
        )
        return [_event_from_row(row) for row in result.scalars().all()]


class SqlAlchemyUsageRepository:
    """Counts live business resources straight from their tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _count(self, stmt: Any) -> int:
        return int(await self.session.scalar(stmt) or 0)

    async def count_active_staff(self, business_id: str) -> int:
        return await self._count(
            select(func.count())
            .select_from(StaffMemberTable)
            .where(
                StaffMemberTable.business_id == business_id,
                StaffMemberTable.is_active.is_(True),
            )
        )

    async def count_active_services(self, business_id: str) -> int:
        return await self._count(
            select(func.count())
            .select_from(ServiceOfferingTable)
            .where(
                ServiceOfferingTable.business_id == business_id,
                ServiceOfferingTable.is_active.is_(True),
            )
        )

    async def count_customers(self, business_id: str) -> int:
        return await self._count(
            select(func.count())
            .select_from(CustomerTable)
            .where(CustomerTable.business_id == business_id, CustomerTable.deleted_at.is_(None))
        )

    async def count_sms_sent(self, business_id: str, since: datetime) -> int:
        return await self._count(
            select(func.count())
            .select_from(SmsMessageTable)
            .where(SmsMessageTable.business_id == business_id, SmsMessageTable.sent_at >= since)
        )


__all__ = [
    "SubscriptionRepository",
    "UsageRepository",
    "SqlAlchemySubscriptionRepository",
    "SqlAlchemyUsageRepository",
]
