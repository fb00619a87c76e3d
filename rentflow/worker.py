"""Celery worker configuration.

This module sets up Celery for the periodic booking jobs:
- Rental activation
- Escrow reconciliation
- Notification cleanup
"""

from celery import Celery
from celery.schedules import crontab

from rentflow.config import settings

# Create Celery app
celery_app = Celery(
    "rentflow_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["rentflow.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes max
    task_soft_time_limit=240,  # Soft limit at 4 minutes

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Activate rentals hourly
        "activate-due-rentals": {
            "task": "rentflow.tasks.activate_due_rentals",
            "schedule": crontab(minute=0),
        },
        # Reconcile escrow every 15 minutes
        "reconcile-escrow": {
            "task": "rentflow.tasks.reconcile_escrow",
            "schedule": crontab(minute="*/15"),
        },
        # Clean up read notifications daily at 3 AM
        "cleanup-read-notifications": {
            "task": "rentflow.tasks.cleanup_read_notifications",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
