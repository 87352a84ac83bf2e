"""
FastAPI dependencies for subscription endpoints.

Services are assembled per request from the request's database session.
HTTP clients for the payment provider and the IP lookup service live on
``app.state``; the application lifespan opens and closes them.
"""

from typing import Annotated

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from randevu.platform.billing.subscriptions.catalog import PlanCatalog
from randevu.platform.billing.subscriptions.gateway import (
    HttpPaymentGateway,
    PaymentGateway,
    TimeoutGuardedGateway,
)
from randevu.platform.billing.subscriptions.geolocation import (
    IPGeolocationClient,
    extract_client_ip,
    is_private_ip,
)
from randevu.platform.billing.subscriptions.models import LocationHint
from randevu.platform.billing.subscriptions.notifications import (
    LoggingNotifier,
    SubscriptionNotifier,
)
from randevu.platform.billing.subscriptions.repository import (
    SqlAlchemySubscriptionRepository,
    SqlAlchemyUsageRepository,
)
from randevu.platform.billing.subscriptions.service import SubscriptionService
from randevu.platform.billing.subscriptions.sweeper import SubscriptionSweeper
from randevu.platform.billing.subscriptions.usage import UsageLimitValidator
from randevu.platform.db import get_async_session
from randevu.platform.settings import settings


def create_http_payment_gateway() -> HttpPaymentGateway:
    """Payment provider client from billing settings. The caller closes it."""
    return HttpPaymentGateway(
        base_url=settings.billing.payment_gateway_url,
        api_key=settings.billing.payment_gateway_api_key,
    )


def create_geolocation_client() -> IPGeolocationClient:
    return IPGeolocationClient(
        base_url=settings.billing.geolocation_url,
        timeout_seconds=settings.billing.geolocation_timeout_seconds,
    )


def guard_gateway(gateway: PaymentGateway) -> PaymentGateway:
    """Bound every gateway call by the configured timeout."""
    return TimeoutGuardedGateway(gateway, settings.billing.payment_gateway_timeout_seconds)


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Payment gateway opened by the lifespan, bounded by the configured timeout."""
    return guard_gateway(request.app.state.payment_gateway)


def get_geolocation_client(request: Request) -> IPGeolocationClient:
    return request.app.state.geolocation_client


def get_notifier() -> SubscriptionNotifier:
    return LoggingNotifier()


def build_catalog(repository: SqlAlchemySubscriptionRepository) -> PlanCatalog:
    return PlanCatalog(
        repository,
        home_currency=settings.billing.default_currency,
        default_city=settings.billing.default_city,
        default_state=settings.billing.default_state,
        default_country=settings.billing.default_country,
    )


def build_subscription_service(
    session: AsyncSession,
    gateway: PaymentGateway,
    notifier: SubscriptionNotifier,
) -> SubscriptionService:
    """Wire a :class:`SubscriptionService` onto ``session``."""
    repository = SqlAlchemySubscriptionRepository(session)
    catalog = build_catalog(repository)
    usage_validator = UsageLimitValidator(repository, SqlAlchemyUsageRepository(session), catalog)
    return SubscriptionService(
        repository=repository,
        catalog=catalog,
        gateway=gateway,
        usage_validator=usage_validator,
        notifier=notifier,
    )


def build_subscription_sweeper(
    session: AsyncSession,
    gateway: PaymentGateway,
    notifier: SubscriptionNotifier,
) -> SubscriptionSweeper:
    """Wire a :class:`SubscriptionSweeper` onto ``session`` with billing settings."""
    repository = SqlAlchemySubscriptionRepository(session)
    return SubscriptionSweeper(
        repository=repository,
        catalog=build_catalog(repository),
        gateway=gateway,
        notifier=notifier,
        max_retry_attempts=settings.billing.max_retry_attempts,
        past_due_expiry_days=settings.billing.past_due_expiry_days,
        retry_interval_hours=settings.billing.renewal_retry_interval_hours,
        trial_ending_notice_days=settings.billing.trial_ending_notice_days,
        renewal_reminder_days=settings.billing.renewal_reminder_days,
    )


def get_plan_catalog(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> PlanCatalog:
    """Dependency to get PlanCatalog instance."""
    return build_catalog(SqlAlchemySubscriptionRepository(db))


def get_subscription_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    notifier: Annotated[SubscriptionNotifier, Depends(get_notifier)],
) -> SubscriptionService:
    """Dependency to get SubscriptionService instance."""
    return build_subscription_service(db, gateway, notifier)


def get_usage_validator(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> UsageLimitValidator:
    """Dependency to get UsageLimitValidator instance."""
    repository = SqlAlchemySubscriptionRepository(db)
    return UsageLimitValidator(
        repository, SqlAlchemyUsageRepository(db), build_catalog(repository)
    )


def get_subscription_sweeper(
    db: Annotated[AsyncSession, Depends(get_async_session)],
    gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    notifier: Annotated[SubscriptionNotifier, Depends(get_notifier)],
) -> SubscriptionSweeper:
    """Dependency to get SubscriptionSweeper instance."""
    return build_subscription_sweeper(db, gateway, notifier)


async def get_request_location(
    request: Request,
    geolocation: Annotated[IPGeolocationClient, Depends(get_geolocation_client)],
    city: str | None = Query(None, max_length=100, description="Override detected city"),
    state: str | None = Query(None, max_length=100, description="Override detected state"),
    country: str | None = Query(None, max_length=100, description="Override detected country"),
) -> LocationHint | None:
    """
    Location used to price plans for this request.

    Explicit query parameters win; otherwise the client IP is looked up.
    Private addresses and failed lookups yield None (default location).
    """
    if city or state or country:
        return LocationHint(city=city, state=state, country=country)

    peer_host = request.client.host if request.client else None
    client_ip = extract_client_ip(request.headers, peer_host)
    if not client_ip or is_private_ip(client_ip):
        return None
    return await geolocation.lookup(client_ip)


__all__ = [
    "get_payment_gateway",
    "get_geolocation_client",
    "create_http_payment_gateway",
    "create_geolocation_client",
    "guard_gateway",
    "get_notifier",
    "build_catalog",
    "build_subscription_service",
    "build_subscription_sweeper",
    "get_plan_catalog",
    "get_subscription_service",
    "get_usage_validator",
    "get_subscription_sweeper",
    "get_request_location",
]
