"""
Billing system exceptions.

Custom exceptions for billing operations with clear error messages.
Provides comprehensive error handling with status codes, context, and recovery hints.
"""

from decimal import Decimal
from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class BillingValidationError(BillingError):
    """Malformed id, date or amount supplied to a billing operation."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        context = dict(context or {})
        if field:
            context["field"] = field

        super().__init__(
            message,
            "VALIDATION_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Correct the highlighted field and retry the request",
        )


class BillingSystemError(BillingError):
    """Data store or infrastructure failure. The message never carries internals."""

    def __init__(self, message: str = "An internal billing error occurred", operation: str | None = None):
        context = {}
        if operation:
            context["operation"] = operation

        super().__init__(
            message,
            "BILLING_SYSTEM_ERROR",
            status_code=500,
            context=context,
            recovery_hint="Retry the request later",
        )


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription not found error."""

    def __init__(
        self, message: str, subscription_id: str | None = None, business_id: str | None = None
    ):
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id
        if business_id:
            context["business_id"] = business_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists and is accessible",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"
        self.status_code = 404


class SubscriptionStateError(SubscriptionError):
    """Invalid subscription state transition error."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint=f"Cannot transition from {current_state} to {requested_state}. Check subscription status first.",
        )
        self.error_code = "INVALID_SUBSCRIPTION_STATE"
        self.status_code = 409


class SubscriptionConflictError(SubscriptionError):
    """Operation conflicts with the subscription's current settings."""

    def __init__(self, message: str, subscription_id: str | None = None) -> None:
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Fetch the current subscription and retry with up-to-date data",
        )
        self.error_code = "SUBSCRIPTION_CONFLICT"
        self.status_code = 409


class PlanNotFoundError(SubscriptionError):
    """Subscription plan not found error."""

    def __init__(self, message: str, plan_id: str | None = None) -> None:
        context = {}
        if plan_id:
            context["plan_id"] = plan_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the plan ID and ensure it exists and is active",
        )
        self.error_code = "PLAN_NOT_FOUND"
        self.status_code = 404


class UsageLimitExceededError(BillingError):
    """Usage limit exceeded error."""

    def __init__(
        self,
        message: str,
        violations: list[str] | None = None,
        metric_name: str | None = None,
        current_usage: int | None = None,
        limit: int | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if violations:
            context["violations"] = violations
        if metric_name:
            context["metric_name"] = metric_name
        if current_usage is not None:
            context["current_usage"] = current_usage
        if limit is not None:
            context["limit"] = limit

        super().__init__(
            message,
            "USAGE_LIMIT_EXCEEDED",
            status_code=409,
            context=context,
            recovery_hint="Upgrade your plan or reduce usage below the plan limits",
        )


class PaymentError(BillingError):
    """Payment processing errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PAYMENT_ERROR", status_code=402, context=context, recovery_hint=recovery_hint
        )


class PaymentDeclinedError(PaymentError):
    """Payment gateway declined or failed to process a charge."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        amount: Decimal | None = None,
        currency: str | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if reason:
            context["reason"] = reason
        if amount is not None:
            context["amount"] = str(amount)
        if currency:
            context["currency"] = currency

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify payment method is valid and has sufficient funds",
        )
        self.error_code = "PAYMENT_DECLINED"


class PaymentMethodNotFoundError(BillingError):
    """Payment method missing, inactive or owned by another business."""

    def __init__(self, message: str, payment_method_id: str | None = None) -> None:
        context = {}
        if payment_method_id:
            context["payment_method_id"] = payment_method_id

        super().__init__(
            message,
            "PAYMENT_METHOD_NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint="Add a payment method to the business before retrying",
        )


class InvalidPaymentMethodError(BillingError):
    """Payment method id has an invalid format."""

    def __init__(self, message: str, payment_method_id: str | None = None) -> None:
        context = {}
        if payment_method_id is not None:
            context["payment_method_id"] = payment_method_id

        super().__init__(
            message,
            "INVALID_PAYMENT_METHOD",
            status_code=400,
            context=context,
            recovery_hint="Payment method ids contain only letters, digits, '_' and '-'",
        )


class PaymentMethodConflictError(BillingError):
    """Payment method already stored, or still backing a live subscription."""

    def __init__(self, message: str, payment_method_id: str | None = None) -> None:
        context = {}
        if payment_method_id:
            context["payment_method_id"] = payment_method_id

        super().__init__(
            message,
            "PAYMENT_METHOD_CONFLICT",
            status_code=409,
            context=context,
            recovery_hint="Attach another payment method to the subscription first",
        )


class InvalidDiscountCodeError(BillingError):
    """Discount code cannot be applied to this purchase."""

    def __init__(self, message: str, code: str, reason: str) -> None:
        super().__init__(
            message,
            "INVALID_DISCOUNT_CODE",
            status_code=400,
            context={"code": code, "reason": reason},
            recovery_hint="Check the code's validity window, plan and minimum amount",
        )


class DiscountCodeConflictError(BillingError):
    """A discount code with the same name already exists."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(
            message,
            "DISCOUNT_CODE_CONFLICT",
            status_code=409,
            context={"code": code},
            recovery_hint="Choose a different code",
        )
