"""
FastAPI application for the Randevu subscription platform.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from randevu.platform.billing.exceptions import BillingError
from randevu.platform.billing.subscriptions.dependencies import (
    build_catalog,
    create_geolocation_client,
    create_http_payment_gateway,
)
from randevu.platform.billing.subscriptions.repository import SqlAlchemySubscriptionRepository
from randevu.platform.billing.subscriptions.router import router as subscriptions_router
from randevu.platform.db import check_database_health, create_all_tables_async, get_async_db
from randevu.platform.logging import setup_logging
from randevu.platform.responses import error_response
from randevu.platform.settings import settings

API_PREFIX = "/api/v1"


async def seed_default_plans() -> int:
    """Create tables and insert the default plan catalog when it is empty."""
    await create_all_tables_async()
    async with get_async_db() as session:
        catalog = build_catalog(SqlAlchemySubscriptionRepository(session))
        return await catalog.ensure_default_plans()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    setup_logging()
    logger = structlog.get_logger(__name__)

    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    seeded = await seed_default_plans()
    logger.info("service.startup.plans_ready", seeded=seeded)

    app.state.payment_gateway = create_http_payment_gateway()
    app.state.geolocation_client = create_geolocation_client()

    try:
        yield
    finally:
        await app.state.payment_gateway.close()
        await app.state.geolocation_client.close()
    logger.info("service.shutdown.complete")


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    logger = structlog.get_logger(__name__)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "api.billing_error",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        message=exc.message,
    )
    details = dict(exc.context)
    if exc.recovery_hint:
        details["recovery_hint"] = exc.recovery_hint
    return error_response(exc.status_code, exc.error_code, exc.message, details)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        {"errors": errors},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    structlog.get_logger(__name__).error(
        "api.unhandled_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette types handlers against the base Exception.
    app.add_exception_handler(BillingError, cast(Any, billing_error_handler))
    app.add_exception_handler(RequestValidationError, cast(Any, validation_error_handler))
    app.add_exception_handler(StarletteHTTPException, cast(Any, http_error_handler))
    app.add_exception_handler(Exception, unhandled_error_handler)


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Randevu Platform",
        description="Subscription billing for appointment-booking businesses",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    register_exception_handlers(app)
    app.include_router(subscriptions_router, prefix=API_PREFIX)

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment.value,
        }

    @app.get("/health/ready")
    async def readiness_check() -> dict[str, Any]:
        """Readiness check endpoint for Kubernetes."""
        database_ok = await check_database_health()
        return {
            "status": "ready" if database_ok else "not ready",
            "database": database_ok,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


app = create_application()
