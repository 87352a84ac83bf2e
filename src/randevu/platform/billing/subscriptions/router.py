"""
Subscription API router.

Plan catalog, business subscription lifecycle, stored payment methods,
discount codes, usage limits and the admin endpoints. Authentication and
business ownership checks happen in front of this router; billing errors are
turned into envelopes by the application's exception handlers.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, status

from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.dependencies import (
    get_plan_catalog,
    get_request_location,
    get_subscription_service,
    get_subscription_sweeper,
    get_usage_validator,
)
from randevu.platform.billing.subscriptions.models import (
    AutoRenewalUpdateRequest,
    CancelRequest,
    ChangeEffective,
    ConvertTrialRequest,
    DiscountCodeCreateRequest,
    DiscountValidationRequest,
    LocationHint,
    PaymentMethodCreateRequest,
    PaymentMethodUpdateRequest,
    PlanChangeRequest,
    StatusOverrideRequest,
    SubscribeRequest,
    SubscriptionStatus,
    UsageResource,
)
from randevu.platform.billing.subscriptions.service import SubscriptionService
from randevu.platform.billing.subscriptions.sweeper import SubscriptionSweeper
from randevu.platform.billing.subscriptions.usage import UsageLimitValidator
from randevu.platform.responses import success_envelope

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])

ServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]
CatalogDep = Annotated[PlanCatalog, Depends(get_plan_catalog)]
LocationDep = Annotated[LocationHint | None, Depends(get_request_location)]


# ========================================
# Plans
# ========================================


@router.get("/plans")
async def list_plans(catalog: CatalogDep, location: LocationDep) -> dict[str, Any]:
    """List active plans priced for the caller's location."""
    plans = await catalog.get_all_plans(location)
    return success_envelope(plans, "Plans retrieved")


@router.get("/plans/interval/{interval}")
async def list_plans_by_interval(
    interval: str, catalog: CatalogDep, location: LocationDep
) -> dict[str, Any]:
    plans = await catalog.get_plans_by_billing_interval(interval, location)
    return success_envelope(plans, f"{interval} plans retrieved")


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str, catalog: CatalogDep, location: LocationDep) -> dict[str, Any]:
    plan = await catalog.get_plan_by_id(plan_id, location, priced=True)
    return success_envelope(plan, "Plan retrieved")


# ========================================
# Business subscription lifecycle
# ========================================


@router.post("/business/{business_id}/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe_business(
    business_id: str, request: SubscribeRequest, service: ServiceDep
) -> dict[str, Any]:
    """
    Subscribe a business to a plan.

    Trial plans start without a charge; other plans charge the first period.
    """
    subscription = await service.subscribe_business(business_id, request)
    return success_envelope(subscription, "Subscription created", status.HTTP_201_CREATED)


@router.get("/business/{business_id}")
async def get_business_subscription(business_id: str, service: ServiceDep) -> dict[str, Any]:
    current = await service.get_business_subscription(business_id)
    return success_envelope(current, "Subscription retrieved")


@router.get("/business/{business_id}/history")
async def get_subscription_history(business_id: str, service: ServiceDep) -> dict[str, Any]:
    history = await service.get_subscription_history(business_id)
    return success_envelope(history, "Subscription history retrieved")


@router.post("/business/{business_id}/upgrade")
async def upgrade_plan(
    business_id: str, request: PlanChangeRequest, service: ServiceDep
) -> dict[str, Any]:
    result = await service.upgrade_plan(business_id, request.new_plan_id)
    return success_envelope(result, "Plan upgraded")


@router.post("/business/{business_id}/downgrade")
async def downgrade_plan(
    business_id: str, request: PlanChangeRequest, service: ServiceDep
) -> dict[str, Any]:
    result = await service.downgrade_plan(business_id, request.new_plan_id, request.effective)
    message = (
        "Plan downgraded"
        if request.effective == ChangeEffective.IMMEDIATE
        else "Plan downgrade scheduled for period end"
    )
    return success_envelope(result, message)


@router.post("/business/{business_id}/cancel")
async def cancel_subscription(
    business_id: str, service: ServiceDep, request: CancelRequest | None = None
) -> dict[str, Any]:
    request = request or CancelRequest()
    subscription = await service.cancel_subscription(
        business_id, request.cancel_at_period_end, request.reason
    )
    message = (
        "Subscription will be canceled at period end"
        if subscription.cancel_at_period_end
        else "Subscription canceled"
    )
    return success_envelope(subscription, message)


@router.post("/business/{business_id}/reactivate")
async def reactivate_subscription(business_id: str, service: ServiceDep) -> dict[str, Any]:
    subscription = await service.reactivate_subscription(business_id)
    return success_envelope(subscription, "Subscription reactivated")


@router.post("/business/{business_id}/convert-trial")
async def convert_trial(
    business_id: str, request: ConvertTrialRequest, service: ServiceDep
) -> dict[str, Any]:
    subscription = await service.convert_trial_to_active(business_id, request.payment_method_id)
    return success_envelope(subscription, "Trial converted to paid subscription")


@router.get("/business/{business_id}/{subscription_id}/preview-change")
async def preview_plan_change(
    business_id: str,
    subscription_id: str,
    service: ServiceDep,
    new_plan_id: str = Query(..., min_length=1, max_length=50),
    effective: ChangeEffective = Query(ChangeEffective.IMMEDIATE),
) -> dict[str, Any]:
    """Show the proration for a plan change without applying it."""
    preview = await service.preview_plan_change(
        business_id, subscription_id, new_plan_id, effective
    )
    return success_envelope(preview, "Plan change preview calculated")


@router.post("/business/{business_id}/{subscription_id}/change-plan")
async def change_subscription_plan(
    business_id: str,
    subscription_id: str,
    request: PlanChangeRequest,
    service: ServiceDep,
) -> dict[str, Any]:
    result = await service.change_subscription_plan(
        business_id, subscription_id, request.new_plan_id, request.effective
    )
    return success_envelope(result, "Plan changed")


# ========================================
# Renewal settings
# ========================================


@router.put("/business/{business_id}/auto-renewal")
async def update_auto_renewal(
    business_id: str, request: AutoRenewalUpdateRequest, service: ServiceDep
) -> dict[str, Any]:
    subscription = await service.update_auto_renewal(
        business_id, request.auto_renewal, request.payment_method_id
    )
    return success_envelope(
        subscription,
        "Auto-renewal enabled" if subscription.auto_renewal else "Auto-renewal disabled",
    )


@router.put("/business/{business_id}/payment-method")
async def update_payment_method(
    business_id: str, request: PaymentMethodUpdateRequest, service: ServiceDep
) -> dict[str, Any]:
    subscription = await service.update_payment_method(business_id, request.payment_method_id)
    return success_envelope(subscription, "Payment method updated")


@router.get("/business/{business_id}/auto-renewal")
async def get_auto_renewal_status(business_id: str, service: ServiceDep) -> dict[str, Any]:
    renewal_status = await service.get_auto_renewal_status(business_id)
    return success_envelope(renewal_status, "Auto-renewal status retrieved")


# ========================================
# Stored payment methods
# ========================================


@router.post("/business/{business_id}/payment-methods", status_code=status.HTTP_201_CREATED)
async def store_payment_method(
    business_id: str, request: PaymentMethodCreateRequest, service: ServiceDep
) -> dict[str, Any]:
    """Store a tokenised card; ``make_default`` replaces the current default."""
    method = await service.store_payment_method(business_id, request)
    return success_envelope(method, "Payment method stored", status.HTTP_201_CREATED)


@router.get("/business/{business_id}/payment-methods")
async def list_payment_methods(business_id: str, service: ServiceDep) -> dict[str, Any]:
    methods = await service.list_payment_methods(business_id)
    return success_envelope(methods, "Payment methods retrieved")


@router.delete("/business/{business_id}/payment-methods/{payment_method_id}")
async def delete_payment_method(
    business_id: str, payment_method_id: str, service: ServiceDep
) -> dict[str, Any]:
    await service.delete_payment_method(business_id, payment_method_id)
    return success_envelope({"payment_method_id": payment_method_id}, "Payment method deleted")


# ========================================
# Discount codes
# ========================================


@router.post("/discount-codes", status_code=status.HTTP_201_CREATED)
async def create_discount_code(
    request: DiscountCodeCreateRequest, service: ServiceDep
) -> dict[str, Any]:
    discount_code = await service.create_discount_code(request)
    return success_envelope(discount_code, "Discount code created", status.HTTP_201_CREATED)


@router.post("/discount-codes/validate")
async def validate_discount_code(
    request: DiscountValidationRequest, service: ServiceDep
) -> dict[str, Any]:
    """Price a code against a plan without redeeming it."""
    quote = await service.validate_discount_code(request)
    return success_envelope(quote, "Discount code is valid")


# ========================================
# Usage
# ========================================


@router.get("/business/{business_id}/usage")
async def get_usage_summary(
    business_id: str,
    validator: Annotated[UsageLimitValidator, Depends(get_usage_validator)],
) -> dict[str, Any]:
    summary = await validator.get_usage_summary(business_id)
    return success_envelope(summary, "Usage retrieved")


@router.get("/business/{business_id}/usage/{resource}")
async def check_usage(
    business_id: str,
    resource: UsageResource,
    validator: Annotated[UsageLimitValidator, Depends(get_usage_validator)],
) -> dict[str, Any]:
    check = await validator.check_resource(business_id, resource)
    return success_envelope(check, check.reason or "Within plan limits")


# ========================================
# Admin
# ========================================


@router.get("/")
async def list_subscriptions(
    service: ServiceDep,
    status_filter: SubscriptionStatus | None = Query(None, alias="status"),
    plan_id: str | None = Query(None, max_length=50),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
) -> dict[str, Any]:
    result = await service.list_subscriptions(status_filter, plan_id, page, page_size)
    return success_envelope(result, "Subscriptions retrieved")


@router.get("/trials/ending-soon")
async def get_trials_ending_soon(
    service: ServiceDep,
    days: int = Query(3, ge=0, le=30, description="Look-ahead window in days"),
) -> dict[str, Any]:
    trials = await service.get_trials_ending_soon(days)
    return success_envelope(trials, f"{len(trials)} trials ending within {days} days")


@router.post("/admin/process-renewals")
async def process_renewals(
    sweeper: Annotated[SubscriptionSweeper, Depends(get_subscription_sweeper)],
) -> dict[str, Any]:
    """Run the renewal sweep now."""
    result = await sweeper.process_subscription_renewals()
    logger.info("subscription.admin.renewals_processed", renewed=result.renewed, failed=result.failed)
    return success_envelope(result, "Renewals processed")


@router.post("/admin/process-expired")
async def process_expired(
    sweeper: Annotated[SubscriptionSweeper, Depends(get_subscription_sweeper)],
) -> dict[str, Any]:
    """Run the expiry sweep now."""
    result = await sweeper.process_expired_subscriptions()
    logger.info(
        "subscription.admin.expired_processed", canceled=result.canceled, expired=result.expired
    )
    return success_envelope(result, "Expired subscriptions processed")


@router.get("/admin/stats")
async def get_subscription_stats(service: ServiceDep) -> dict[str, Any]:
    stats = await service.get_subscription_stats()
    return success_envelope(stats, "Subscription statistics retrieved")


@router.put("/admin/{subscription_id}/status")
async def force_update_status(
    subscription_id: str, request: StatusOverrideRequest, service: ServiceDep
) -> dict[str, Any]:
    """Force a status change outside the lifecycle rules; the reason is audited."""
    subscription = await service.force_update_status(
        subscription_id, request.status, request.reason
    )
    return success_envelope(subscription, f"Subscription status set to {subscription.status.value}")


__all__ = ["router"]
