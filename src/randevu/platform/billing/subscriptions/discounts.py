"""
Discount codes.

A code is taken off the first paid charge of a subscription: the initial
charge at sign-up, or the trial conversion charge for a code entered while
signing up for a trial. Renewals are charged at the plan price.

``check_discount_code`` and ``calculate_discount`` are pure; the checks run
in a fixed order so the first failing rule is the one reported.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError

from randevu.platform.billing.exceptions import (
    BillingValidationError,
    DiscountCodeConflictError,
    InvalidDiscountCodeError,
)
from randevu.platform.billing.money_utils import round_amount
from randevu.platform.billing.subscriptions.models import (
    DiscountCode,
    DiscountCodeCreateRequest,
    DiscountQuote,
    DiscountType,
    SubscriptionPlan,
    utcnow,
)
from randevu.platform.billing.subscriptions.repository import SubscriptionRepository
from randevu.platform.logging import get_logger, log_audit_event

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def check_discount_code(
    raw_code: str,
    discount_code: DiscountCode | None,
    plan: SubscriptionPlan,
    amount: Decimal,
    now: datetime,
    already_used: bool,
) -> DiscountCode:
    """Return ``discount_code`` if it can be applied, else raise.

    Raises:
        InvalidDiscountCodeError: with ``reason`` naming the first rule that failed.
    """
    code = raw_code.strip().upper()
    if discount_code is None:
        raise InvalidDiscountCodeError("Discount code not found", code=code, reason="not_found")
    if not discount_code.is_active:
        raise InvalidDiscountCodeError("Discount code is not active", code=code, reason="inactive")
    if discount_code.valid_from > now:
        raise InvalidDiscountCodeError(
            "Discount code is not valid yet", code=code, reason="not_yet_valid"
        )
    if discount_code.valid_until is not None and discount_code.valid_until < now:
        raise InvalidDiscountCodeError("Discount code has expired", code=code, reason="expired")
    if (
        discount_code.max_usages is not None
        and discount_code.current_usages >= discount_code.max_usages
    ):
        raise InvalidDiscountCodeError(
            "Discount code usage limit reached", code=code, reason="usage_limit_reached"
        )
    if already_used:
        raise InvalidDiscountCodeError(
            "Discount code has already been used by this business",
            code=code,
            reason="already_used",
        )
    if discount_code.min_purchase_amount is not None and amount < discount_code.min_purchase_amount:
        raise InvalidDiscountCodeError(
            f"Minimum purchase amount is {discount_code.min_purchase_amount}",
            code=code,
            reason="below_minimum",
        )
    if not discount_code.applies_to(plan.name):
        raise InvalidDiscountCodeError(
            "Discount code does not apply to this plan", code=code, reason="plan_not_eligible"
        )
    return discount_code


def calculate_discount(
    discount_code: DiscountCode, amount: Decimal, currency: str
) -> DiscountQuote:
    """Price ``discount_code`` against ``amount``; the discount never exceeds the amount."""
    if discount_code.discount_type == DiscountType.PERCENTAGE:
        discount = amount * discount_code.discount_value / _HUNDRED
    else:
        discount = discount_code.discount_value
    discount = round_amount(min(discount, amount), currency)
    return DiscountQuote(
        code=discount_code.code,
        discount_type=discount_code.discount_type,
        discount_value=discount_code.discount_value,
        original_amount=amount,
        discount_amount=discount,
        final_amount=max(Decimal("0"), amount - discount),
        currency=currency,
    )


class DiscountCodeService:
    """Creates, quotes and redeems discount codes."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock

    async def create_code(self, request: DiscountCodeCreateRequest) -> DiscountCode:
        """
        Store a new code, active immediately unless ``valid_from`` says otherwise.

        Raises:
            BillingValidationError: the percentage exceeds 100 or the validity window is empty.
            DiscountCodeConflictError: the code already exists.
        """
        try:
            discount_code = DiscountCode(
                **request.model_dump(exclude={"valid_from"}),
                valid_from=request.valid_from or self.clock(),
            )
        except ValidationError as exc:
            raise BillingValidationError(
                exc.errors()[0]["msg"], field="discount_code"
            ) from exc
        async with self.repository.transaction():
            if await self.repository.get_discount_code(discount_code.code) is not None:
                raise DiscountCodeConflictError(
                    f"Discount code {discount_code.code} already exists", code=discount_code.code
                )
            created = await self.repository.add_discount_code(discount_code)

        log_audit_event(
            "discount_code.created",
            resource_type="discount_code",
            resource_id=created.code,
            discount_type=created.discount_type.value,
            discount_value=str(created.discount_value),
        )
        return created

    async def quote(
        self, code: str, business_id: str, plan: SubscriptionPlan, amount: Decimal
    ) -> DiscountQuote:
        """Validate ``code`` for this business and plan and price it against ``amount``."""
        normalised = code.strip().upper()
        already_used = await self.repository.has_redeemed_discount_code(normalised, business_id)
        discount_code = check_discount_code(
            normalised,
            await self.repository.get_discount_code(normalised),
            plan,
            amount,
            self.clock(),
            already_used,
        )
        return calculate_discount(discount_code, amount, plan.currency)

    async def try_quote(
        self, code: str, business_id: str, plan: SubscriptionPlan, amount: Decimal
    ) -> DiscountQuote | None:
        """Like :meth:`quote`, but an unusable code is logged and ignored."""
        try:
            return await self.quote(code, business_id, plan, amount)
        except InvalidDiscountCodeError as exc:
            logger.warning(
                "discount_code.ignored",
                code=exc.context["code"],
                reason=exc.context["reason"],
                business_id=business_id,
                plan_id=plan.plan_id,
            )
            return None

    async def redeem(self, quote: DiscountQuote, business_id: str, subscription_id: str) -> bool:
        """Consume one use of the quoted code; False if it ran out in the meantime."""
        redeemed = await self.repository.redeem_discount_code(quote, business_id, subscription_id)
        if redeemed:
            logger.info(
                "discount_code.redeemed",
                code=quote.code,
                business_id=business_id,
                subscription_id=subscription_id,
                discount_amount=str(quote.discount_amount),
            )
        else:
            logger.warning("discount_code.exhausted", code=quote.code, business_id=business_id)
        return redeemed


__all__ = [
    "check_discount_code",
    "calculate_discount",
    "DiscountCodeService",
]
