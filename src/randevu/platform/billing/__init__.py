"""
Billing system module.

Provides subscription billing capabilities:
- Subscription plans and lifecycle
- Proration of mid-period plan changes
- Usage limits derived from the current plan
- Money handling with py-moneyed and Babel
"""

from randevu.platform.billing.exceptions import (
    BillingError,
    BillingSystemError,
    BillingValidationError,
    InvalidPaymentMethodError,
    PaymentDeclinedError,
    PaymentError,
    PaymentMethodNotFoundError,
    PlanNotFoundError,
    SubscriptionConflictError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    UsageLimitExceededError,
)

__all__ = [
    "BillingError",
    "BillingSystemError",
    "BillingValidationError",
    "InvalidPaymentMethodError",
    "PaymentDeclinedError",
    "PaymentError",
    "PaymentMethodNotFoundError",
    "PlanNotFoundError",
    "SubscriptionConflictError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionStateError",
    "UsageLimitExceededError",
]
