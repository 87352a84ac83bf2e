"""
Plan catalog.

Read access to subscription plans with location-based pricing, plus plan
versioning: a price change publishes a new plan row instead of mutating
one that subscriptions may already reference.
"""

from decimal import Decimal

from randevu.platform.billing.exceptions import BillingValidationError, PlanNotFoundError
from randevu.platform.billing.subscriptions.models import (
    BillingInterval,
    LocationHint,
    PlanLimits,
    SubscriptionPlan,
)
from randevu.platform.billing.subscriptions.pricing_tiers import (
    ResolvedLocation,
    apply_location_pricing,
    resolve_location,
)
from randevu.platform.billing.subscriptions.repository import SubscriptionRepository
from randevu.platform.logging import get_logger

logger = get_logger(__name__)


DEFAULT_PLANS: tuple[SubscriptionPlan, ...] = (
    SubscriptionPlan(
        plan_id="plan_starter_monthly",
        name="starter",
        display_name="Starter",
        description="Everything a single-location business needs to take bookings",
        price=Decimal("750.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        limits=PlanLimits(
            max_staff=3,
            max_services=15,
            max_customers=1000,
            sms_quota=1000,
            max_appointments_per_day=50,
        ),
        features={
            "appointment_booking": True,
            "staff_management": True,
            "basic_reports": True,
            "sms_notifications": True,
            "advanced_reports": False,
            "custom_branding": False,
            "api_access": False,
        },
        trial_days=0,
        sort_order=1,
    ),
    SubscriptionPlan(
        plan_id="plan_professional_monthly",
        name="professional",
        display_name="Professional",
        description="Advanced reporting and branding for growing teams",
        price=Decimal("1250.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        limits=PlanLimits(
            max_staff=10,
            max_services=50,
            max_customers=5000,
            sms_quota=2500,
            max_appointments_per_day=150,
        ),
        features={
            "appointment_booking": True,
            "staff_management": True,
            "basic_reports": True,
            "sms_notifications": True,
            "advanced_reports": True,
            "custom_branding": True,
            "api_access": True,
        },
        trial_days=14,
        is_popular=True,
        sort_order=2,
    ),
    SubscriptionPlan(
        plan_id="plan_enterprise_monthly",
        name="enterprise",
        display_name="Enterprise",
        description="Multi-team businesses with high booking volume",
        price=Decimal("2000.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        limits=PlanLimits(
            max_staff=50,
            max_services=200,
            max_customers=25000,
            sms_quota=10000,
            max_appointments_per_day=500,
        ),
        features={
            "appointment_booking": True,
            "staff_management": True,
            "basic_reports": True,
            "sms_notifications": True,
            "advanced_reports": True,
            "custom_branding": True,
            "api_access": True,
            "priority_support": True,
        },
        trial_days=0,
        sort_order=3,
    ),
)


class PlanCatalog:
    """Looks up plans and prices them for a caller's location."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        home_currency: str = "TRY",
        default_city: str = "Istanbul",
        default_state: str = "Istanbul",
        default_country: str = "Turkey",
    ) -> None:
        self.repository = repository
        self.home_currency = home_currency.upper()
        self.default_city = default_city
        self.default_state = default_state
        self.default_country = default_country

    def resolve_location(self, location: LocationHint | None) -> ResolvedLocation:
        return resolve_location(
            location,
            default_city=self.default_city,
            default_state=self.default_state,
            default_country=self.default_country,
        )

    def _price(self, plan: SubscriptionPlan, location: LocationHint | None) -> SubscriptionPlan:
        return apply_location_pricing(plan, self.resolve_location(location), self.home_currency)

    async def get_all_plans(self, location: LocationHint | None = None) -> list[SubscriptionPlan]:
        """Active plans in display order, priced for ``location`` (default location if None)."""
        plans = await self.repository.list_plans(active_only=True)
        return [self._price(plan, location) for plan in plans]

    async def get_plan_by_id(
        self, plan_id: str, location: LocationHint | None = None, priced: bool = False
    ) -> SubscriptionPlan:
        """Return a plan, including retired versions still referenced by subscriptions.

        Location pricing is applied when ``location`` is given, or for the
        default location when ``priced`` is set.

        Raises:
            PlanNotFoundError: no plan has this id.
        """
        plan = await self.repository.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
        if priced or location is not None:
            return self._price(plan, location)
        return plan

    async def get_active_plan(self, plan_id: str) -> SubscriptionPlan:
        """Return a plan that can be subscribed or switched to."""
        plan = await self.get_plan_by_id(plan_id)
        if not plan.is_active:
            raise PlanNotFoundError(f"Plan {plan_id} is not available", plan_id=plan_id)
        return plan

    async def get_plans_by_billing_interval(
        self, interval: str | BillingInterval, location: LocationHint | None = None
    ) -> list[SubscriptionPlan]:
        try:
            billing_interval = BillingInterval(str(getattr(interval, "value", interval)).lower())
        except ValueError:
            raise BillingValidationError(
                f"Invalid billing interval: {interval}",
                field="interval",
                context={"allowed": [i.value for i in BillingInterval]},
            )
        plans = await self.repository.list_plans(active_only=True, interval=billing_interval)
        return [self._price(plan, location) for plan in plans]

    async def publish_plan_version(self, plan_id: str, price: Decimal) -> SubscriptionPlan:
        """Publish a new version of ``plan_id`` at ``price`` and retire the old one.

        Existing subscriptions keep the version they reference.
        """
        if price < 0:
            raise BillingValidationError("Plan price cannot be negative", field="price")

        async with self.repository.transaction():
            current = await self.repository.get_plan(plan_id)
            if current is None:
                raise PlanNotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
            if not current.is_active:
                raise BillingValidationError(
                    "Only the active version of a plan can be re-priced",
                    field="plan_id",
                    context={"plan_id": plan_id},
                )

            version = current.version + 1
            new_plan = current.model_copy(
                update={
                    "plan_id": f"plan_{current.name}_{current.billing_interval.value}_v{version}",
                    "price": price,
                    "version": version,
                    "created_at": None,
                    "updated_at": None,
                }
            )
            await self.repository.deactivate_plan(current.plan_id)
            created = await self.repository.add_plan(new_plan)

        logger.info(
            "subscription.plan.version_published",
            previous_plan_id=plan_id,
            plan_id=created.plan_id,
            version=version,
            price=str(price),
        )
        return created

    async def ensure_default_plans(self) -> int:
        """Insert the default plans when the catalog is empty. Returns rows added."""
        async with self.repository.transaction():
            if await self.repository.list_plans(active_only=False):
                return 0
            for plan in DEFAULT_PLANS:
                await self.repository.add_plan(plan)

        logger.info("subscription.plan.defaults_seeded", count=len(DEFAULT_PLANS))
        return len(DEFAULT_PLANS)


__all__ = ["PlanCatalog", "DEFAULT_PLANS"]
