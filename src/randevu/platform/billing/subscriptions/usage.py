"""
Usage limit validator.

Compares live resource counts with the current plan's quotas. Counts are
read from the source tables on every call; nothing is cached, so a check
followed by a create can race and the last write wins.
"""

from collections.abc import Callable
from datetime import datetime

from randevu.platform.billing.exceptions import (
    SubscriptionNotFoundError,
    UsageLimitExceededError,
)
from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.models import (
    LIVE_STATUSES,
    UNLIMITED,
    ResourceUsage,
    Subscription,
    SubscriptionPlan,
    UsageCheck,
    UsageResource,
    UsageSummary,
    utcnow,
)
from randevu.platform.billing.subscriptions.repository import (
    SubscriptionRepository,
    UsageRepository,
)
from randevu.platform.logging import get_logger

logger = get_logger(__name__)

NEAR_LIMIT_THRESHOLD = 80.0

_RESOURCE_LABELS = {
    UsageResource.STAFF: "staff members",
    UsageResource.SERVICES: "services",
    UsageResource.CUSTOMERS: "customers",
    UsageResource.SMS: "SMS messages this billing period",
}


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def build_check(
    resource: UsageResource, current_count: int, limit: int, requested: int = 1
) -> UsageCheck:
    """Allow when ``current_count + requested`` stays within ``limit``."""
    if limit == UNLIMITED:
        return UsageCheck(resource=resource, allowed=True, current_count=current_count, limit=limit)

    allowed = current_count + requested <= limit
    reason = None
    if not allowed:
        reason = (
            f"Plan limit reached: {current_count} of {limit} {_RESOURCE_LABELS[resource]} used. "
            "Upgrade your plan to add more."
        )
    return UsageCheck(
        resource=resource,
        allowed=allowed,
        current_count=current_count,
        limit=limit,
        reason=reason,
    )


class UsageLimitValidator:
    """Checks a business's resource counts against its current plan."""

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        usage: UsageRepository,
        catalog: PlanCatalog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.subscriptions = subscriptions
        self.usage = usage
        self.catalog = catalog
        self.clock = clock

    async def _current_plan(
        self, business_id: str
    ) -> tuple[Subscription, SubscriptionPlan] | None:
        subscription = await self.subscriptions.get_current_subscription(business_id)
        if subscription is None or subscription.status not in LIVE_STATUSES:
            return None
        plan = await self.catalog.get_plan_by_id(subscription.plan_id)
        return subscription, plan

    @staticmethod
    def _no_subscription(resource: UsageResource) -> UsageCheck:
        return UsageCheck(
            resource=resource,
            allowed=False,
            current_count=0,
            limit=0,
            reason="No active subscription found",
        )

    async def _count(self, business_id: str, resource: UsageResource, since: datetime) -> int:
        if resource == UsageResource.STAFF:
            return await self.usage.count_active_staff(business_id)
        if resource == UsageResource.SERVICES:
            return await self.usage.count_active_services(business_id)
        if resource == UsageResource.CUSTOMERS:
            return await self.usage.count_customers(business_id)
        return await self.usage.count_sms_sent(business_id, since)

    async def _check_count(self, business_id: str, resource: UsageResource) -> UsageCheck:
        current = await self._current_plan(business_id)
        if current is None:
            return self._no_subscription(resource)
        subscription, plan = current
        count = await self._count(business_id, resource, subscription.current_period_start)
        return build_check(resource, count, plan.limits.limit_for(resource))

    async def can_add_staff_member(self, business_id: str) -> UsageCheck:
        return await self._check_count(business_id, UsageResource.STAFF)

    async def can_add_service(self, business_id: str) -> UsageCheck:
        return await self._check_count(business_id, UsageResource.SERVICES)

    async def can_add_customer(self, business_id: str) -> UsageCheck:
        return await self._check_count(business_id, UsageResource.CUSTOMERS)

    async def can_send_sms(self, business_id: str, count: int = 1) -> UsageCheck:
        """Check both the daily SMS cap and the per-period SMS quota.

        The daily cap is checked first; the first exhausted limit is reported.
        """
        current = await self._current_plan(business_id)
        if current is None:
            return self._no_subscription(UsageResource.SMS)
        subscription, plan = current

        if plan.limits.max_sms_per_day != UNLIMITED:
            sent_today = await self.usage.count_sms_sent(business_id, _start_of_day(self.clock()))
            if sent_today + count > plan.limits.max_sms_per_day:
                return UsageCheck(
                    resource=UsageResource.SMS,
                    allowed=False,
                    current_count=sent_today,
                    limit=plan.limits.max_sms_per_day,
                    reason=(
                        f"Daily SMS limit reached: {sent_today} of "
                        f"{plan.limits.max_sms_per_day} sent today"
                    ),
                )

        sent_in_period = await self.usage.count_sms_sent(
            business_id, subscription.current_period_start
        )
        return build_check(UsageResource.SMS, sent_in_period, plan.limits.sms_quota, count)

    async def check_resource(self, business_id: str, resource: UsageResource) -> UsageCheck:
        """Dispatch to the check for ``resource``."""
        if resource == UsageResource.SMS:
            return await self.can_send_sms(business_id)
        return await self._check_count(business_id, resource)

    async def enforce(self, business_id: str, resource: UsageResource) -> UsageCheck:
        """Like :meth:`check_resource` but raises when the resource is exhausted."""
        check = await self.check_resource(business_id, resource)
        if not check.allowed:
            logger.info(
                "subscription.usage.limit_reached",
                business_id=business_id,
                resource=resource.value,
                current_count=check.current_count,
                limit=check.limit,
            )
            raise UsageLimitExceededError(
                check.reason or "Usage limit exceeded",
                metric_name=resource.value,
                current_usage=check.current_count,
                limit=check.limit,
            )
        return check

    async def get_usage_summary(self, business_id: str) -> UsageSummary:
        """Usage of every plan-limited resource, flagging those at 80% or more."""
        current = await self._current_plan(business_id)
        if current is None:
            raise SubscriptionNotFoundError(
                "No active subscription found", business_id=business_id
            )
        subscription, plan = current

        resources = []
        for resource in UsageResource:
            count = await self._count(business_id, resource, subscription.current_period_start)
            limit = plan.limits.limit_for(resource)
            if limit == UNLIMITED:
                resources.append(
                    ResourceUsage(resource=resource, current_count=count, limit=limit, unlimited=True)
                )
                continue
            percentage = round(count / limit * 100, 1) if limit else 100.0
            resources.append(
                ResourceUsage(
                    resource=resource,
                    current_count=count,
                    limit=limit,
                    unlimited=False,
                    percentage=percentage,
                    near_limit=percentage >= NEAR_LIMIT_THRESHOLD,
                )
            )

        sent_today = await self.usage.count_sms_sent(business_id, _start_of_day(self.clock()))
        return UsageSummary(
            business_id=business_id,
            plan_id=plan.plan_id,
            period_start=subscription.current_period_start,
            resources=resources,
            sms_sent_today=sent_today,
            max_sms_per_day=plan.limits.max_sms_per_day,
        )

    async def validate_plan_limits(self, business_id: str, plan: SubscriptionPlan) -> list[str]:
        """List every resource whose current usage exceeds ``plan``'s limits."""
        violations = []
        for resource in (UsageResource.STAFF, UsageResource.SERVICES, UsageResource.CUSTOMERS):
            limit = plan.limits.limit_for(resource)
            if limit == UNLIMITED:
                continue
            count = await self._count(business_id, resource, self.clock())
            if count > limit:
                violations.append(
                    f"Current {_RESOURCE_LABELS[resource]} ({count}) exceeds the "
                    f"{plan.display_name} limit of {limit}"
                )
        return violations


__all__ = ["UsageLimitValidator", "build_check", "NEAR_LIMIT_THRESHOLD"]
