"""
Pytest fixtures for business subscription tests.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio

from randevu.platform.billing.metrics import SubscriptionMetrics
from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.gateway import ChargeResult
from randevu.platform.billing.subscriptions.models import (
    BillingInterval,
    DiscountCode,
    DiscountType,
    PaymentMethod,
    PlanLimits,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from randevu.platform.billing.subscriptions.repository import (
    SqlAlchemySubscriptionRepository,
    SqlAlchemyUsageRepository,
)
from randevu.platform.billing.subscriptions.service import SubscriptionService
from randevu.platform.billing.subscriptions.sweeper import SubscriptionSweeper
from randevu.platform.billing.subscriptions.usage import UsageLimitValidator
from randevu.platform.business.models import (
    CustomerTable,
    ServiceOfferingTable,
    SmsMessageTable,
    StaffMemberTable,
)

NOW = datetime(2025, 3, 16, 12, 0, tzinfo=UTC)
BUSINESS_ID = "biz-001"
PAYMENT_METHOD_ID = "pm_visa_4242"


class MutableClock:
    """Clock whose time tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeGateway:
    """Records charges and credits; declines on demand."""

    def __init__(self) -> None:
        self.charges: list[dict[str, Any]] = []
        self.credits: list[dict[str, Any]] = []
        self.decline_reason: str | None = None
        self.declined_methods: set[str] = set()
        self.raise_error: Exception | None = None

    async def charge(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        if self.raise_error is not None:
            raise self.raise_error
        call = {
            "payment_method_id": payment_method_id,
            "amount": amount,
            "currency": currency,
            "description": description,
            "metadata": metadata or {},
        }
        self.charges.append(call)
        if self.decline_reason or payment_method_id in self.declined_methods:
            return ChargeResult(success=False, failure_reason=self.decline_reason or "declined")
        return ChargeResult(success=True, transaction_id=f"txn_{len(self.charges)}")

    async def refund_or_credit(
        self,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        self.credits.append(
            {"payment_method_id": payment_method_id, "amount": amount, "currency": currency}
        )
        return ChargeResult(success=True, transaction_id=f"crd_{len(self.credits)}")


class FakeNotifier:
    """Collects notifications as ``(kind, subscription_id)`` tuples."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def _record(self, kind: str, subscription: Subscription) -> None:
        if self.fail:
            raise RuntimeError("notification provider unavailable")
        self.sent.append((kind, subscription.subscription_id))

    async def trial_ending(self, subscription, plan, days_left):
        await self._record("trial_ending", subscription)

    async def payment_failed(self, subscription, plan, reason, attempt):
        await self._record("payment_failed", subscription)

    async def renewal_succeeded(self, subscription, plan, amount):
        await self._record("renewal_succeeded", subscription)

    async def renewal_reminder(self, subscription, plan, days_left):
        await self._record("renewal_reminder", subscription)

    async def subscription_canceled(self, subscription, plan, at_period_end):
        await self._record("subscription_canceled", subscription)

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]


@pytest.fixture
def clock():
    return MutableClock(NOW)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def metrics():
    return SubscriptionMetrics()


@pytest_asyncio.fixture
async def repository(db_session):
    return SqlAlchemySubscriptionRepository(db_session)


@pytest_asyncio.fixture
async def usage_repository(db_session):
    return SqlAlchemyUsageRepository(db_session)


@pytest_asyncio.fixture
async def catalog(repository):
    """Plan catalog seeded with the default plans."""
    catalog = PlanCatalog(repository)
    await catalog.ensure_default_plans()
    return catalog


@pytest_asyncio.fixture
async def usage_validator(repository, usage_repository, catalog, clock):
    return UsageLimitValidator(repository, usage_repository, catalog, clock=clock)


@pytest_asyncio.fixture
async def service(repository, catalog, gateway, usage_validator, notifier, metrics, clock):
    return SubscriptionService(
        repository=repository,
        catalog=catalog,
        gateway=gateway,
        usage_validator=usage_validator,
        notifier=notifier,
        metrics=metrics,
        clock=clock,
    )


@pytest_asyncio.fixture
async def sweeper(repository, catalog, gateway, notifier, metrics, clock):
    return SubscriptionSweeper(
        repository=repository,
        catalog=catalog,
        gateway=gateway,
        notifier=notifier,
        metrics=metrics,
        max_retry_attempts=3,
        past_due_expiry_days=30,
        retry_interval_hours=24,
        clock=clock,
    )


@pytest_asyncio.fixture
async def payment_method(repository):
    """Active card on file for ``BUSINESS_ID``."""
    async with repository.transaction():
        return await repository.add_payment_method(
            PaymentMethod(
                payment_method_id=PAYMENT_METHOD_ID,
                business_id=BUSINESS_ID,
                last_four_digits="4242",
                card_brand="visa",
                expiry_month=12,
                expiry_year=2030,
                is_default=True,
            )
        )


@pytest_asyncio.fixture
async def yearly_plan(repository):
    async with repository.transaction():
        return await repository.add_plan(
            SubscriptionPlan(
                plan_id="plan_professional_yearly",
                name="professional_yearly",
                display_name="Professional (Yearly)",
                price=Decimal("12000.00"),
                currency="TRY",
                billing_interval=BillingInterval.YEARLY,
                limits=PlanLimits(max_staff=10, max_services=50, max_customers=5000),
                sort_order=4,
            )
        )


@pytest.fixture
def make_discount_code(repository):
    """Insert a discount code valid from the start of 2025."""

    async def _make(
        code: str = "WELCOME20",
        discount_type: DiscountType = DiscountType.PERCENTAGE,
        discount_value: Decimal = Decimal("20"),
        **overrides: Any,
    ) -> DiscountCode:
        values: dict[str, Any] = {
            "code": code,
            "discount_type": discount_type,
            "discount_value": discount_value,
            "valid_from": datetime(2025, 1, 1, tzinfo=UTC),
        }
        values.update(overrides)
        async with repository.transaction():
            return await repository.add_discount_code(DiscountCode(**values))

    return _make


@pytest.fixture
def make_subscription(repository):
    """Insert a subscription row directly, bypassing the lifecycle rules."""

    async def _make(
        business_id: str = BUSINESS_ID,
        plan_id: str = "plan_starter_monthly",
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        period_start: datetime = datetime(2025, 3, 1, tzinfo=UTC),
        period_end: datetime = datetime(2025, 4, 1, tzinfo=UTC),
        **overrides: Any,
    ) -> Subscription:
        values: dict[str, Any] = {
            "subscription_id": f"sub_{business_id}_{status.value}",
            "business_id": business_id,
            "plan_id": plan_id,
            "status": status,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "next_billing_date": period_end,
            "payment_method_id": PAYMENT_METHOD_ID,
        }
        values.update(overrides)
        async with repository.transaction():
            return await repository.add_subscription(Subscription(**values))

    return _make


@pytest.fixture
def add_business_rows(db_session):
    """Insert staff, service, customer or SMS rows for a business."""

    async def _add(
        business_id: str = BUSINESS_ID,
        staff: int = 0,
        services: int = 0,
        customers: int = 0,
        sms: int = 0,
        sms_sent_at: datetime | None = None,
        inactive_staff: int = 0,
    ) -> None:
        for i in range(staff):
            db_session.add(StaffMemberTable(business_id=business_id, name=f"Staff {i}"))
        for i in range(inactive_staff):
            db_session.add(
                StaffMemberTable(business_id=business_id, name=f"Former {i}", is_active=False)
            )
        for i in range(services):
            db_session.add(ServiceOfferingTable(business_id=business_id, name=f"Service {i}"))
        for i in range(customers):
            db_session.add(CustomerTable(business_id=business_id, name=f"Customer {i}"))
        for i in range(sms):
            db_session.add(
                SmsMessageTable(
                    business_id=business_id,
                    recipient=f"+90555000{i:04d}",
                    sent_at=sms_sent_at or NOW,
                )
            )
        await db_session.commit()

    return _add
