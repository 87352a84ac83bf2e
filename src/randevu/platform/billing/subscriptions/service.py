"""
Subscription lifecycle manager.

Orchestrates sign-up, trial conversion, plan changes, cancellation,
reactivation, renewal settings, stored payment methods and admin status
overrides. Every mutation runs inside one repository transaction, and
subscription changes go through the conditional ``transition`` update, so a
concurrent writer turns into a state error instead of a lost update.
Notifications are sent only after the transaction commits.

Moving a subscription to ``past_due`` or ``expired`` is left to
:mod:`randevu.platform.billing.subscriptions.sweeper`.
"""

import re
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

from randevu.platform.billing.exceptions import (
    BillingValidationError,
    InvalidPaymentMethodError,
    PaymentDeclinedError,
    PaymentMethodConflictError,
    PaymentMethodNotFoundError,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    UsageLimitExceededError,
)
from randevu.platform.billing.metrics import SubscriptionMetrics, get_subscription_metrics
from randevu.platform.billing.money_utils import round_amount
from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.discounts import DiscountCodeService
from randevu.platform.billing.subscriptions.gateway import PaymentGateway
from randevu.platform.billing.subscriptions.models import (
    LIVE_STATUSES,
    AutoRenewalStatus,
    BusinessSubscription,
    ChangeEffective,
    ChangeType,
    DiscountCode,
    DiscountCodeCreateRequest,
    DiscountQuote,
    DiscountValidationRequest,
    PaymentMethod,
    PaymentMethodCreateRequest,
    PaymentMethodSummary,
    PlanChangePreview,
    PlanChangeResult,
    SubscribeRequest,
    Subscription,
    SubscriptionEventType,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionStats,
    SubscriptionStatus,
    add_billing_interval,
    utcnow,
)
from randevu.platform.billing.subscriptions.notifications import (
    LoggingNotifier,
    SubscriptionNotifier,
    dispatch_notification,
)
from randevu.platform.billing.subscriptions.proration import calculate_proration, classify_change
from randevu.platform.billing.subscriptions.repository import SubscriptionRepository
from randevu.platform.billing.subscriptions.usage import UsageLimitValidator
from randevu.platform.logging import get_logger, log_audit_event

logger = get_logger(__name__)

PAYMENT_METHOD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

MAX_PAGE_SIZE = 100


def validate_payment_method_id(payment_method_id: str | None) -> str:
    """Return ``payment_method_id`` if well formed, else raise a 400 error."""
    if not payment_method_id or not PAYMENT_METHOD_ID_PATTERN.match(payment_method_id):
        raise InvalidPaymentMethodError(
            "Invalid payment method id format", payment_method_id=payment_method_id
        )
    return payment_method_id


def discount_metadata(quote: DiscountQuote) -> dict[str, str]:
    return {
        "code": quote.code,
        "original_amount": str(quote.original_amount),
        "discount_amount": str(quote.discount_amount),
        "final_amount": str(quote.final_amount),
    }


def summarize_payment_method(payment_method: PaymentMethod) -> PaymentMethodSummary:
    return PaymentMethodSummary(
        payment_method_id=payment_method.payment_method_id,
        card_brand=payment_method.card_brand,
        last_four_digits=payment_method.last_four_digits,
        masked_number=payment_method.masked_number,
        expiry_month=payment_method.expiry_month,
        expiry_year=payment_method.expiry_year,
        is_default=payment_method.is_default,
    )


class SubscriptionService:
    """Business subscription lifecycle operations."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        catalog: PlanCatalog,
        gateway: PaymentGateway,
        usage_validator: UsageLimitValidator,
        notifier: SubscriptionNotifier | None = None,
        metrics: SubscriptionMetrics | None = None,
        discounts: DiscountCodeService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.gateway = gateway
        self.usage_validator = usage_validator
        self.notifier = notifier or LoggingNotifier()
        self.metrics = metrics or get_subscription_metrics()
        self.discounts = discounts or DiscountCodeService(repository, clock)
        self.clock = clock

    # ========================================
    # Helpers
    # ========================================

    async def _require_current(self, business_id: str) -> Subscription:
        subscription = await self.repository.get_current_subscription(business_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"No subscription found for business {business_id}", business_id=business_id
            )
        return subscription

    async def _require_owned(self, business_id: str, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if subscription is None or subscription.business_id != business_id:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found",
                subscription_id=subscription_id,
                business_id=business_id,
            )
        return subscription

    async def _require_payment_method(
        self, business_id: str, payment_method_id: str | None
    ) -> PaymentMethod:
        validate_payment_method_id(payment_method_id)
        payment_method = await self.repository.get_payment_method(payment_method_id)
        if (
            payment_method is None
            or not payment_method.is_active
            or payment_method.business_id != business_id
        ):
            raise PaymentMethodNotFoundError(
                "Payment method not found for this business", payment_method_id=payment_method_id
            )
        if payment_method.is_expired(self.clock()):
            raise InvalidPaymentMethodError(
                "Payment method has expired", payment_method_id=payment_method_id
            )
        return payment_method

    async def _charge(
        self,
        subscription_id: str,
        payment_method_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        purpose: str,
    ) -> str | None:
        """Charge through the gateway; raise :class:`PaymentDeclinedError` on failure."""
        result = await self.gateway.charge(
            payment_method_id,
            amount,
            currency,
            description=description,
            metadata={
                "subscription_id": subscription_id,
                "purpose": purpose,
                "idempotency_key": f"{subscription_id}:{purpose}:{uuid4().hex}",
            },
        )
        if not result.success:
            logger.warning(
                "subscription.charge.declined",
                subscription_id=subscription_id,
                purpose=purpose,
                amount=str(amount),
                currency=currency,
                reason=result.failure_reason,
            )
            raise PaymentDeclinedError(
                "Payment was declined",
                reason=result.failure_reason,
                amount=amount,
                currency=currency,
            )
        return result.transaction_id

    async def _apply_discount(
        self, code: str, business_id: str, plan: SubscriptionPlan, subscription_id: str
    ) -> DiscountQuote | None:
        """Quote and redeem ``code`` against the plan price; None when it cannot be used."""
        quote = await self.discounts.try_quote(code, business_id, plan, plan.price)
        if quote is None:
            return None
        if not await self.discounts.redeem(quote, business_id, subscription_id):
            return None
        return quote

    async def _transition(
        self,
        subscription: Subscription,
        expected: Iterable[SubscriptionStatus],
        changes: dict[str, Any],
        event_type: SubscriptionEventType,
        event_data: dict[str, Any] | None = None,
    ) -> Subscription:
        """Conditionally update ``subscription`` and record the event.

        Raises:
            SubscriptionStateError: the row is no longer in an expected status.
        """
        expected = tuple(expected)
        requested = changes.get("status", subscription.status)
        updated = await self.repository.transition(subscription.subscription_id, expected, changes)
        if updated is None:
            latest = await self.repository.get_subscription(subscription.subscription_id)
            current_state = latest.status.value if latest else subscription.status.value
            raise SubscriptionStateError(
                f"Subscription is {current_state}; expected one of "
                f"{', '.join(s.value for s in expected)}",
                current_state=current_state,
                requested_state=SubscriptionStatus(requested).value,
            )

        await self.repository.add_event(updated, event_type, event_data)
        if updated.status != subscription.status:
            self.metrics.record_transition(
                subscription.status.value, updated.status.value, event_type.value
            )
        log_audit_event(
            event_type.value,
            business_id=updated.business_id,
            resource_type="subscription",
            resource_id=updated.subscription_id,
            status=updated.status.value,
        )
        return updated

    # ========================================
    # Reads
    # ========================================

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return subscription

    async def get_business_subscription(self, business_id: str) -> BusinessSubscription:
        """Current subscription of a business together with its plan."""
        subscription = await self._require_current(business_id)
        plan = await self.catalog.get_plan_by_id(subscription.plan_id)
        return BusinessSubscription(subscription=subscription, plan=plan)

    async def get_subscription_history(self, business_id: str) -> list[Subscription]:
        """All subscriptions of a business, newest first."""
        return await self.repository.list_business_subscriptions(business_id)

    async def list_subscriptions(
        self,
        status: SubscriptionStatus | None = None,
        plan_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> SubscriptionPage:
        if page < 1:
            raise BillingValidationError("page must be 1 or greater", field="page")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise BillingValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
            )
        items, total = await self.repository.list_subscriptions(
            status=status, plan_id=plan_id, offset=(page - 1) * page_size, limit=page_size
        )
        return SubscriptionPage(items=items, total=total, page=page, page_size=page_size)

    async def get_trials_ending_soon(self, days: int = 3) -> list[Subscription]:
        if days < 0:
            raise BillingValidationError("days cannot be negative", field="days")
        now = self.clock()
        return await self.repository.find_trials_ending(now, now + timedelta(days=days))

    # ========================================
    # Sign-up and trials
    # ========================================

    async def subscribe_business(
        self, business_id: str, request: SubscribeRequest
    ) -> Subscription:
        """
        Create the current subscription for a business.

        Plans with a trial start ``trialing`` without a charge; a discount
        code given at sign-up is kept for the trial conversion charge. Other
        plans need a payment method and charge the first period up front,
        less any discount. An unusable discount code is ignored.

        Raises:
            SubscriptionConflictError: the business already has a live subscription.
            PlanNotFoundError: the plan does not exist or is retired.
            PaymentDeclinedError: the first charge failed.
        """
        now = self.clock()
        subscription_id = f"sub_{uuid4().hex}"

        async with self.repository.transaction():
            existing = await self.repository.get_current_subscription(business_id)
            if existing is not None and existing.status in LIVE_STATUSES:
                raise SubscriptionConflictError(
                    "Business already has an active subscription",
                    subscription_id=existing.subscription_id,
                )

            plan = await self.catalog.get_active_plan(request.plan_id)

            payment_method_id = request.payment_method_id
            if payment_method_id is not None:
                await self._require_payment_method(business_id, payment_method_id)

            metadata = dict(request.metadata)
            transaction_id = None
            discount = None
            amount_charged = Decimal("0")
            if plan.has_trial():
                if request.discount_code:
                    pending = await self.discounts.try_quote(
                        request.discount_code, business_id, plan, plan.price
                    )
                    if pending is not None:
                        metadata["pending_discount_code"] = pending.code
                trial_end = now + timedelta(days=plan.trial_days)
                subscription = Subscription(
                    subscription_id=subscription_id,
                    business_id=business_id,
                    plan_id=plan.plan_id,
                    status=SubscriptionStatus.TRIALING,
                    current_period_start=now,
                    current_period_end=trial_end,
                    next_billing_date=trial_end,
                    trial_start=now,
                    trial_end=trial_end,
                    auto_renewal=request.auto_renewal,
                    payment_method_id=payment_method_id,
                    metadata=metadata,
                )
            else:
                if payment_method_id is None:
                    raise BillingValidationError(
                        "A payment method is required for plans without a trial",
                        field="payment_method_id",
                    )
                amount_charged = plan.price
                if request.discount_code:
                    discount = await self._apply_discount(
                        request.discount_code, business_id, plan, subscription_id
                    )
                if discount is not None:
                    amount_charged = discount.final_amount
                    metadata["discount"] = discount_metadata(discount)
                if amount_charged > 0:
                    transaction_id = await self._charge(
                        subscription_id,
                        payment_method_id,
                        amount_charged,
                        plan.currency,
                        f"{plan.display_name} subscription",
                        "initial",
                    )
                period_end = add_billing_interval(now, plan.billing_interval)
                subscription = Subscription(
                    subscription_id=subscription_id,
                    business_id=business_id,
                    plan_id=plan.plan_id,
                    status=SubscriptionStatus.ACTIVE,
                    current_period_start=now,
                    current_period_end=period_end,
                    next_billing_date=period_end,
                    auto_renewal=request.auto_renewal,
                    payment_method_id=payment_method_id,
                    metadata=metadata,
                )

            if existing is not None:
                await self.repository.demote_current(business_id)
            created = await self.repository.add_subscription(subscription)
            await self.repository.add_event(
                created,
                SubscriptionEventType.TRIAL_STARTED
                if plan.has_trial()
                else SubscriptionEventType.CREATED,
                {
                    "plan_id": plan.plan_id,
                    "status": created.status.value,
                    "price": plan.price,
                    "amount_charged": amount_charged,
                    "discount_code": discount.code if discount else None,
                    "transaction_id": transaction_id,
                    "previous_subscription_id": existing.subscription_id if existing else None,
                },
            )

        self.metrics.record_transition(None, created.status.value, "subscribe")
        log_audit_event(
            SubscriptionEventType.CREATED.value,
            business_id=business_id,
            resource_type="subscription",
            resource_id=created.subscription_id,
            plan_id=plan.plan_id,
            status=created.status.value,
        )
        return created

    async def convert_trial_to_active(self, business_id: str, payment_method_id: str) -> Subscription:
        """
        End the trial early: charge the plan price and start the first paid period.

        A discount code kept from sign-up is re-validated and, if still
        usable, taken off this charge.

        Raises:
            SubscriptionStateError: the subscription is not trialing.
            PaymentDeclinedError: the charge failed; the trial is left untouched.
        """
        now = self.clock()
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            if subscription.status != SubscriptionStatus.TRIALING:
                raise SubscriptionStateError(
                    "Only trialing subscriptions can be converted",
                    current_state=subscription.status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )
            await self._require_payment_method(business_id, payment_method_id)
            plan = await self.catalog.get_plan_by_id(subscription.plan_id)

            metadata = dict(subscription.metadata)
            pending_code = metadata.pop("pending_discount_code", None)
            discount = None
            if pending_code:
                discount = await self._apply_discount(
                    pending_code, business_id, plan, subscription.subscription_id
                )
            amount = plan.price
            if discount is not None:
                amount = discount.final_amount
                metadata["discount"] = discount_metadata(discount)

            transaction_id = None
            if amount > 0:
                transaction_id = await self._charge(
                    subscription.subscription_id,
                    payment_method_id,
                    amount,
                    plan.currency,
                    f"{plan.display_name} subscription",
                    "trial_conversion",
                )
            period_end = add_billing_interval(now, plan.billing_interval)
            updated = await self._transition(
                subscription,
                [SubscriptionStatus.TRIALING],
                {
                    "status": SubscriptionStatus.ACTIVE,
                    "payment_method_id": payment_method_id,
                    "trial_end": now,
                    "current_period_start": now,
                    "current_period_end": period_end,
                    "next_billing_date": period_end,
                    "failed_payment_count": 0,
                    "metadata": metadata,
                },
                SubscriptionEventType.TRIAL_CONVERTED,
                {
                    "plan_id": plan.plan_id,
                    "amount": amount,
                    "discount_code": discount.code if discount else None,
                    "transaction_id": transaction_id,
                },
            )
        return updated

    # ========================================
    # Plan changes
    # ========================================

    async def _build_preview(
        self,
        subscription: Subscription,
        new_plan_id: str,
        effective: ChangeEffective,
    ) -> tuple[PlanChangePreview, SubscriptionPlan, SubscriptionPlan]:
        if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            raise SubscriptionStateError(
                "Plan can only be changed on an active or trialing subscription",
                current_state=subscription.status.value,
                requested_state=subscription.status.value,
            )
        if subscription.plan_id == new_plan_id:
            raise BillingValidationError(
                "Subscription is already on this plan", field="new_plan_id"
            )

        current_plan = await self.catalog.get_plan_by_id(subscription.plan_id)
        new_plan = await self.catalog.get_active_plan(new_plan_id)
        now = self.clock()

        change_type = classify_change(current_plan, new_plan)
        interval_changed = current_plan.billing_interval != new_plan.billing_interval
        immediate = effective == ChangeEffective.IMMEDIATE

        # Deferred changes and trials settle nothing now
        settle_at = now if immediate and subscription.status == SubscriptionStatus.ACTIVE else (
            subscription.current_period_end
        )
        proration = calculate_proration(
            current_plan,
            new_plan,
            subscription.current_period_start,
            subscription.current_period_end,
            settle_at,
        )
        if interval_changed and settle_at == now:
            # A new full period of the new plan starts now
            charge = round_amount(new_plan.price, new_plan.currency)
            proration = proration.model_copy(
                update={
                    "charge_amount": charge,
                    "net_amount": charge - proration.credit_amount,
                    "description": (
                        f"Billing interval change: credit {proration.credit_amount} "
                        f"{new_plan.currency} for {current_plan.display_name}, charge {charge} "
                        f"{new_plan.currency} for a new {new_plan.billing_interval.value} period"
                    ),
                }
            )

        preview = PlanChangePreview(
            subscription_id=subscription.subscription_id,
            current_plan_id=current_plan.plan_id,
            new_plan_id=new_plan.plan_id,
            change_type=change_type,
            effective=effective,
            current_price=current_plan.price,
            new_price=new_plan.price,
            proration=proration,
            interval_changed=interval_changed,
            effective_date=now if immediate else subscription.current_period_end,
        )
        return preview, current_plan, new_plan

    async def preview_plan_change(
        self,
        business_id: str,
        subscription_id: str,
        new_plan_id: str,
        effective: ChangeEffective = ChangeEffective.IMMEDIATE,
    ) -> PlanChangePreview:
        """Price a plan change without applying it."""
        subscription = await self._require_owned(business_id, subscription_id)
        preview, _, _ = await self._build_preview(subscription, new_plan_id, effective)
        return preview

    async def _apply_plan_change(
        self,
        subscription: Subscription,
        new_plan_id: str,
        effective: ChangeEffective,
        required_type: ChangeType | None,
    ) -> PlanChangeResult:
        preview, current_plan, new_plan = await self._build_preview(
            subscription, new_plan_id, effective
        )

        if required_type == ChangeType.UPGRADE and preview.change_type != ChangeType.UPGRADE:
            raise BillingValidationError(
                "New plan must be an upgrade (higher price)",
                field="new_plan_id",
                context={"current_price": current_plan.price, "new_price": new_plan.price},
            )
        if required_type == ChangeType.DOWNGRADE and preview.change_type != ChangeType.DOWNGRADE:
            raise BillingValidationError(
                "New plan must be a downgrade (lower price)",
                field="new_plan_id",
                context={"current_price": current_plan.price, "new_price": new_plan.price},
            )

        if preview.change_type != ChangeType.UPGRADE:
            violations = await self.usage_validator.validate_plan_limits(
                subscription.business_id, new_plan
            )
            if violations:
                raise UsageLimitExceededError(
                    "Current usage exceeds the limits of the new plan", violations=violations
                )

        if effective == ChangeEffective.PERIOD_END:
            updated = await self._transition(
                subscription,
                [subscription.status],
                {"scheduled_plan_id": new_plan.plan_id},
                SubscriptionEventType.PLAN_CHANGE_SCHEDULED,
                {
                    "from_plan_id": current_plan.plan_id,
                    "to_plan_id": new_plan.plan_id,
                    "change_type": preview.change_type.value,
                    "effective_date": preview.effective_date,
                },
            )
            return PlanChangeResult(subscription=updated, preview=preview)

        net = preview.proration.net_amount
        transaction_id = None
        credit_failed = False
        if net > 0:
            if not subscription.payment_method_id:
                raise PaymentMethodNotFoundError("A payment method is required to upgrade")
            transaction_id = await self._charge(
                subscription.subscription_id,
                subscription.payment_method_id,
                net,
                preview.proration.currency,
                f"Plan change to {new_plan.display_name}",
                "plan_change",
            )
        elif net < 0 and subscription.payment_method_id:
            credit = await self.gateway.refund_or_credit(
                subscription.payment_method_id,
                -net,
                preview.proration.currency,
                description=f"Plan change credit from {current_plan.display_name}",
                metadata={"subscription_id": subscription.subscription_id, "purpose": "plan_change"},
            )
            transaction_id = credit.transaction_id
            if not credit.success:
                credit_failed = True
                logger.warning(
                    "subscription.plan_change.credit_failed",
                    subscription_id=subscription.subscription_id,
                    amount=str(-net),
                    reason=credit.failure_reason,
                )

        changes: dict[str, Any] = {"plan_id": new_plan.plan_id, "scheduled_plan_id": None}
        if preview.interval_changed and subscription.status == SubscriptionStatus.ACTIVE:
            now = preview.effective_date
            period_end = add_billing_interval(now, new_plan.billing_interval)
            changes.update(
                current_period_start=now,
                current_period_end=period_end,
                next_billing_date=period_end,
            )

        updated = await self._transition(
            subscription,
            [subscription.status],
            changes,
            SubscriptionEventType.PLAN_CHANGED,
            {
                "from_plan_id": current_plan.plan_id,
                "to_plan_id": new_plan.plan_id,
                "change_type": preview.change_type.value,
                "proration": preview.proration.model_dump(),
                "transaction_id": transaction_id,
                "credit_failed": credit_failed,
            },
        )
        self.metrics.record_proration(net, preview.proration.currency, preview.change_type.value)
        return PlanChangeResult(subscription=updated, preview=preview, transaction_id=transaction_id)

    async def change_subscription_plan(
        self,
        business_id: str,
        subscription_id: str,
        new_plan_id: str,
        effective: ChangeEffective = ChangeEffective.IMMEDIATE,
    ) -> PlanChangeResult:
        """Move a subscription to any other active plan, now or at period end."""
        async with self.repository.transaction():
            subscription = await self._require_owned(business_id, subscription_id)
            return await self._apply_plan_change(subscription, new_plan_id, effective, None)

    async def upgrade_plan(self, business_id: str, new_plan_id: str) -> PlanChangeResult:
        """Immediately move the current subscription to a more expensive plan."""
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            return await self._apply_plan_change(
                subscription, new_plan_id, ChangeEffective.IMMEDIATE, ChangeType.UPGRADE
            )

    async def downgrade_plan(
        self,
        business_id: str,
        new_plan_id: str,
        effective: ChangeEffective = ChangeEffective.IMMEDIATE,
    ) -> PlanChangeResult:
        """Move the current subscription to a cheaper plan that fits current usage."""
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            return await self._apply_plan_change(
                subscription, new_plan_id, effective, ChangeType.DOWNGRADE
            )

    # ========================================
    # Cancellation and reactivation
    # ========================================

    async def cancel_subscription(
        self,
        business_id: str,
        cancel_at_period_end: bool = True,
        reason: str | None = None,
    ) -> Subscription:
        """
        Cancel the current subscription.

        With ``cancel_at_period_end`` only the flag is set and the sweeper
        cancels at the period boundary; otherwise the status flips to
        ``canceled`` now. Past-due subscriptions are always canceled now.

        Raises:
            SubscriptionConflictError: already canceled, or cancellation is already scheduled.
            SubscriptionStateError: the subscription has expired.
        """
        now = self.clock()
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            if subscription.status == SubscriptionStatus.CANCELED:
                raise SubscriptionConflictError(
                    "Subscription is already canceled",
                    subscription_id=subscription.subscription_id,
                )
            if subscription.status not in LIVE_STATUSES:
                raise SubscriptionStateError(
                    f"Subscription is already {subscription.status.value}",
                    current_state=subscription.status.value,
                    requested_state=SubscriptionStatus.CANCELED.value,
                )
            if subscription.cancel_at_period_end:
                raise SubscriptionConflictError(
                    "Subscription is already scheduled to cancel at period end",
                    subscription_id=subscription.subscription_id,
                )

            metadata = dict(subscription.metadata)
            if reason:
                metadata["cancel_reason"] = reason

            at_period_end = (
                cancel_at_period_end and subscription.status != SubscriptionStatus.PAST_DUE
            )
            if at_period_end:
                updated = await self._transition(
                    subscription,
                    [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING],
                    {"cancel_at_period_end": True, "canceled_at": now, "metadata": metadata},
                    SubscriptionEventType.CANCEL_SCHEDULED,
                    {"reason": reason, "effective_date": subscription.current_period_end},
                )
            else:
                updated = await self._transition(
                    subscription,
                    LIVE_STATUSES,
                    {
                        "status": SubscriptionStatus.CANCELED,
                        "canceled_at": now,
                        "cancel_at_period_end": False,
                        "auto_renewal": False,
                        "scheduled_plan_id": None,
                        "metadata": metadata,
                    },
                    SubscriptionEventType.CANCELED,
                    {"reason": reason, "immediate": True},
                )
            plan = await self.catalog.get_plan_by_id(updated.plan_id)

        await dispatch_notification(
            self.notifier.subscription_canceled(updated, plan, at_period_end),
            "subscription_canceled",
            subscription_id=updated.subscription_id,
        )
        return updated

    async def reactivate_subscription(self, business_id: str) -> Subscription:
        """
        Undo a cancellation while the paid period is still running.

        Raises:
            SubscriptionStateError: expired, or the period has already ended.
            SubscriptionConflictError: nothing to reactivate.
        """
        now = self.clock()
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)

            if subscription.status == SubscriptionStatus.EXPIRED:
                raise SubscriptionStateError(
                    "Expired subscriptions cannot be reactivated; subscribe again instead",
                    current_state=subscription.status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )
            if subscription.current_period_end <= now:
                raise SubscriptionStateError(
                    "The billing period has already ended",
                    current_state=subscription.status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )

            if subscription.status == SubscriptionStatus.CANCELED:
                in_trial = subscription.trial_end is not None and subscription.trial_end > now
                return await self._transition(
                    subscription,
                    [SubscriptionStatus.CANCELED],
                    {
                        "status": SubscriptionStatus.TRIALING if in_trial else SubscriptionStatus.ACTIVE,
                        "canceled_at": None,
                        "cancel_at_period_end": False,
                        "auto_renewal": subscription.payment_method_id is not None,
                    },
                    SubscriptionEventType.REACTIVATED,
                    {"previous_status": subscription.status.value},
                )

            if subscription.cancel_at_period_end:
                return await self._transition(
                    subscription,
                    [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING],
                    {"cancel_at_period_end": False, "canceled_at": None},
                    SubscriptionEventType.REACTIVATED,
                    {"previous_status": subscription.status.value, "cleared_scheduled_cancel": True},
                )

            raise SubscriptionConflictError(
                "Subscription is not canceled", subscription_id=subscription.subscription_id
            )

    # ========================================
    # Renewal settings
    # ========================================

    async def update_auto_renewal(
        self,
        business_id: str,
        auto_renewal: bool,
        payment_method_id: str | None = None,
    ) -> Subscription:
        """Turn auto-renewal on or off. Turning it on needs a payment method."""
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            if subscription.status not in LIVE_STATUSES:
                raise SubscriptionStateError(
                    "Auto-renewal can only be changed on a live subscription",
                    current_state=subscription.status.value,
                    requested_state=subscription.status.value,
                )

            if payment_method_id is not None:
                await self._require_payment_method(business_id, payment_method_id)
            effective_method = payment_method_id or subscription.payment_method_id
            if auto_renewal and not effective_method:
                raise BillingValidationError(
                    "A payment method is required to enable auto-renewal",
                    field="payment_method_id",
                )

            return await self._transition(
                subscription,
                LIVE_STATUSES,
                {"auto_renewal": auto_renewal, "payment_method_id": effective_method},
                SubscriptionEventType.AUTO_RENEWAL_UPDATED,
                {"auto_renewal": auto_renewal, "payment_method_id": effective_method},
            )

    async def update_payment_method(self, business_id: str, payment_method_id: str) -> Subscription:
        """Attach a payment method; a past-due subscription is retried at the next sweep."""
        now = self.clock()
        async with self.repository.transaction():
            subscription = await self._require_current(business_id)
            await self._require_payment_method(business_id, payment_method_id)

            changes: dict[str, Any] = {"payment_method_id": payment_method_id}
            if subscription.status == SubscriptionStatus.PAST_DUE:
                changes["next_billing_date"] = now

            return await self._transition(
                subscription,
                LIVE_STATUSES,
                changes,
                SubscriptionEventType.PAYMENT_METHOD_UPDATED,
                {
                    "previous_payment_method_id": subscription.payment_method_id,
                    "payment_method_id": payment_method_id,
                },
            )

    async def get_auto_renewal_status(self, business_id: str) -> AutoRenewalStatus:
        subscription = await self._require_current(business_id)
        summary = None
        if subscription.payment_method_id:
            payment_method = await self.repository.get_payment_method(
                subscription.payment_method_id
            )
            if payment_method is not None:
                summary = summarize_payment_method(payment_method)

        return AutoRenewalStatus(
            subscription_id=subscription.subscription_id,
            auto_renewal=subscription.auto_renewal,
            next_billing_date=subscription.next_billing_date,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            payment_method=summary,
        )

    # ========================================
    # Stored payment methods
    # ========================================

    async def store_payment_method(
        self, business_id: str, request: PaymentMethodCreateRequest
    ) -> PaymentMethodSummary:
        """
        Store a tokenised card for a business. Only masked card data is kept.

        Raises:
            InvalidPaymentMethodError: malformed id, or the card has expired.
            PaymentMethodConflictError: the id is already stored.
        """
        validate_payment_method_id(request.payment_method_id)
        payment_method = PaymentMethod(
            payment_method_id=request.payment_method_id,
            business_id=business_id,
            last_four_digits=request.last_four_digits,
            card_brand=request.card_brand,
            expiry_month=request.expiry_month,
            expiry_year=request.expiry_year,
            is_default=request.make_default,
        )
        if payment_method.is_expired(self.clock()):
            raise InvalidPaymentMethodError(
                "Payment method has expired", payment_method_id=request.payment_method_id
            )

        async with self.repository.transaction():
            if await self.repository.get_payment_method(request.payment_method_id) is not None:
                raise PaymentMethodConflictError(
                    "Payment method is already stored",
                    payment_method_id=request.payment_method_id,
                )
            if request.make_default:
                await self.repository.clear_default_payment_method(business_id)
            stored = await self.repository.add_payment_method(payment_method)

        log_audit_event(
            "payment_method.stored",
            business_id=business_id,
            resource_type="payment_method",
            resource_id=stored.payment_method_id,
            card_brand=stored.card_brand,
            is_default=stored.is_default,
        )
        return summarize_payment_method(stored)

    async def list_payment_methods(self, business_id: str) -> list[PaymentMethodSummary]:
        methods = await self.repository.list_payment_methods(business_id)
        return [summarize_payment_method(method) for method in methods]

    async def delete_payment_method(self, business_id: str, payment_method_id: str) -> None:
        """
        Soft-delete a stored payment method.

        Raises:
            PaymentMethodNotFoundError: missing, already deleted, or owned by another business.
            PaymentMethodConflictError: the live subscription still bills this method.
        """
        validate_payment_method_id(payment_method_id)
        async with self.repository.transaction():
            payment_method = await self.repository.get_payment_method(payment_method_id)
            if (
                payment_method is None
                or not payment_method.is_active
                or payment_method.business_id != business_id
            ):
                raise PaymentMethodNotFoundError(
                    "Payment method not found for this business",
                    payment_method_id=payment_method_id,
                )
            current = await self.repository.get_current_subscription(business_id)
            if (
                current is not None
                and current.status in LIVE_STATUSES
                and current.payment_method_id == payment_method_id
            ):
                raise PaymentMethodConflictError(
                    "Payment method is used by the current subscription",
                    payment_method_id=payment_method_id,
                )
            await self.repository.deactivate_payment_method(payment_method_id)

        log_audit_event(
            "payment_method.deleted",
            business_id=business_id,
            resource_type="payment_method",
            resource_id=payment_method_id,
        )

    # ========================================
    # Discount codes
    # ========================================

    async def create_discount_code(self, request: DiscountCodeCreateRequest) -> DiscountCode:
        return await self.discounts.create_code(request)

    async def validate_discount_code(self, request: DiscountValidationRequest) -> DiscountQuote:
        """Price a discount code against a plan without redeeming it."""
        plan = await self.catalog.get_active_plan(request.plan_id)
        return await self.discounts.quote(request.code, request.business_id, plan, plan.price)

    # ========================================
    # Administration
    # ========================================

    async def get_subscription_stats(self) -> SubscriptionStats:
        """Counts of current subscriptions by status and by plan."""
        by_status = await self.repository.count_current_subscriptions("status")
        by_plan = await self.repository.count_current_subscriptions("plan_id")
        return SubscriptionStats(
            total=sum(by_status.values()),
            by_status={s.value: by_status.get(s.value, 0) for s in SubscriptionStatus},
            by_plan=by_plan,
        )

    async def force_update_status(
        self, subscription_id: str, status: SubscriptionStatus, reason: str
    ) -> Subscription:
        """
        Move a subscription to ``status`` outside the normal lifecycle rules.

        The override and its reason are kept in the subscription metadata
        under ``admin_action`` and in the audit trail.

        Raises:
            SubscriptionNotFoundError: unknown subscription.
            SubscriptionConflictError: already in ``status``, or not the current subscription.
        """
        now = self.clock()
        status = SubscriptionStatus(status)
        async with self.repository.transaction():
            subscription = await self.get_subscription(subscription_id)
            if not subscription.is_current:
                raise SubscriptionConflictError(
                    "Only a business's current subscription can be overridden",
                    subscription_id=subscription_id,
                )
            if subscription.status == status:
                raise SubscriptionConflictError(
                    f"Subscription is already {status.value}", subscription_id=subscription_id
                )

            metadata = dict(subscription.metadata)
            metadata["admin_action"] = {
                "action": "status_override",
                "previous_status": subscription.status.value,
                "status": status.value,
                "reason": reason,
                "at": now.isoformat(),
            }
            changes: dict[str, Any] = {"status": status, "metadata": metadata}
            if status == SubscriptionStatus.CANCELED:
                changes.update(canceled_at=now, cancel_at_period_end=False, auto_renewal=False)
            elif status == SubscriptionStatus.EXPIRED:
                changes.update(ended_at=now, auto_renewal=False)
            elif status == SubscriptionStatus.ACTIVE:
                changes["failed_payment_count"] = 0

            updated = await self._transition(
                subscription,
                [subscription.status],
                changes,
                SubscriptionEventType.STATUS_OVERRIDDEN,
                {
                    "previous_status": subscription.status.value,
                    "status": status.value,
                    "reason": reason,
                },
            )

        logger.warning(
            "subscription.status.overridden",
            subscription_id=subscription_id,
            business_id=updated.business_id,
            previous_status=subscription.status.value,
            status=status.value,
            reason=reason,
        )
        return updated


__all__ = [
    "SubscriptionService",
    "PAYMENT_METHOD_ID_PATTERN",
    "validate_payment_method_id",
    "summarize_payment_method",
    "discount_metadata",
]
