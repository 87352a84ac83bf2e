"""
Celery application configuration.

Periodic subscription sweeps are registered on the beat schedule once the
app is finalized.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from randevu.platform.settings import settings

T = TypeVar("T")

# Create Celery application
celery_app = Celery(
    "randevu_platform",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["randevu.platform.billing.subscriptions.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    task_routes={
        "subscriptions.*": {"queue": "billing"},
    },
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("billing", routing_key="billing"),
    ),
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,
    # Sweeps are not redelivered after a worker crash
    task_acks_late=False,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    worker_send_task_events=True,
    task_send_sent_event=True,
)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` to completion from a synchronous Celery task."""
    return asyncio.run(coro)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the subscription sweeps on the beat schedule."""
    from randevu.platform.billing.subscriptions.tasks import (
        process_expired_subscriptions_task,
        process_subscription_renewals_task,
        send_renewal_reminders_task,
        send_trial_ending_notifications_task,
    )

    billing = settings.billing

    sender.add_periodic_task(
        billing.expiry_sweep_interval_seconds,
        process_expired_subscriptions_task.s(),
        name="subscriptions-process-expired",
    )
    sender.add_periodic_task(
        billing.renewal_sweep_interval_seconds,
        process_subscription_renewals_task.s(),
        name="subscriptions-process-renewals",
    )

    # Daily reminders
    sender.add_periodic_task(
        crontab(hour=billing.notification_sweep_hour, minute=0),
        send_trial_ending_notifications_task.s(),
        name="subscriptions-trial-ending-notifications",
    )
    sender.add_periodic_task(
        crontab(hour=billing.notification_sweep_hour, minute=15),
        send_renewal_reminders_task.s(),
        name="subscriptions-renewal-reminders",
    )

    structlog.get_logger(__name__).info(
        "celery.periodic_tasks.registered",
        renewal_interval=billing.renewal_sweep_interval_seconds,
        expiry_interval=billing.expiry_sweep_interval_seconds,
    )


__all__ = ["celery_app", "run_async"]
