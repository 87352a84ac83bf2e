"""
Celery tasks driving the subscription sweeper.

Each task runs one sweep in a fresh event loop and returns the
:class:`SweepResult` counters. Every run opens and closes its own payment
provider client, and the engine's pool is disposed afterwards because pooled
connections are bound to the loop that opened them.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from randevu.platform.billing.subscriptions.dependencies import (
    build_subscription_sweeper,
    create_http_payment_gateway,
    get_notifier,
    guard_gateway,
)
from randevu.platform.billing.subscriptions.models import SweepResult
from randevu.platform.billing.subscriptions.sweeper import SubscriptionSweeper
from randevu.platform.celery_app import celery_app, run_async
from randevu.platform.db import get_async_db, get_async_engine
from randevu.platform.logging import get_logger

logger = get_logger(__name__)


async def _run_sweep(
    name: str, sweep: Callable[[SubscriptionSweeper], Awaitable[SweepResult]]
) -> dict[str, Any]:
    gateway = create_http_payment_gateway()
    try:
        async with get_async_db() as session:
            sweeper = build_subscription_sweeper(session, guard_gateway(gateway), get_notifier())
            result = await sweep(sweeper)
    finally:
        await gateway.close()
        await get_async_engine().dispose()

    logger.info(
        "subscription.task.completed",
        task=name,
        processed=result.processed,
        errors=len(result.errors),
    )
    return result.model_dump()


@celery_app.task(name="subscriptions.process_renewals")
def process_subscription_renewals_task() -> dict[str, Any]:
    """Charge subscriptions whose period has ended."""
    return run_async(
        _run_sweep("process_renewals", lambda s: s.process_subscription_renewals())
    )


@celery_app.task(name="subscriptions.process_expired")
def process_expired_subscriptions_task() -> dict[str, Any]:
    """Cancel or expire subscriptions that will not renew."""
    return run_async(
        _run_sweep("process_expired", lambda s: s.process_expired_subscriptions())
    )


@celery_app.task(name="subscriptions.send_trial_ending_notifications")
def send_trial_ending_notifications_task(days: int | None = None) -> dict[str, Any]:
    return run_async(
        _run_sweep("trial_ending", lambda s: s.send_trial_ending_notifications(days))
    )


@celery_app.task(name="subscriptions.send_renewal_reminders")
def send_renewal_reminders_task(days: int | None = None) -> dict[str, Any]:
    return run_async(_run_sweep("renewal_reminders", lambda s: s.send_renewal_reminders(days)))


__all__ = [
    "process_subscription_renewals_task",
    "process_expired_subscriptions_task",
    "send_trial_ending_notifications_task",
    "send_renewal_reminders_task",
]
