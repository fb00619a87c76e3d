"""Celery background tasks.

This module contains the periodic jobs for:
- Rental activation on the start date
- Escrow and refund reconciliation
- Notification cleanup
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from celery import shared_task
from sqlalchemy import and_, delete

from rentflow.database import get_db_context
from rentflow.models.notification import Notification
from rentflow.services.reconciliation_service import reconciliation_service

logger = logging.getLogger(__name__)

_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro):
    """Run async function in sync context.

    One loop per worker process, so pooled database connections stay bound
    to the loop that opened them.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


# ==================== RENTAL TASKS ====================


@shared_task(bind=True, max_retries=3)
def activate_due_rentals(self):
    """Start rentals whose start date has arrived.

    Runs hourly. Each booking moves awaiting_start_date → active as system.
    """
    try:
        summary = run_async(_activate_due_rentals())
        return {"status": "success", **summary}
    except Exception as exc:
        logger.exception("Rental activation run failed")
        raise self.retry(exc=exc, countdown=300)


async def _activate_due_rentals() -> dict:
    async with get_db_context() as db:
        return await reconciliation_service.activate_due_rentals(db)


# ==================== RECONCILIATION TASKS ====================


@shared_task(bind=True, max_retries=3)
def reconcile_escrow(self):
    """Retry escrow releases and post-cancel refunds that did not land."""
    try:
        summary = run_async(_reconcile_escrow())
        return {"status": "success", **summary}
    except Exception as exc:
        logger.exception("Escrow reconciliation run failed")
        raise self.retry(exc=exc, countdown=60)


async def _reconcile_escrow() -> dict:
    async with get_db_context() as db:
        return {
            "escrow_release": await reconciliation_service.release_stuck_escrow(db),
            "cancelled_refunds": await reconciliation_service.refund_cancelled_settlements(db),
        }


# ==================== CLEANUP TASKS ====================


@shared_task
def cleanup_read_notifications():
    """Remove read notifications older than 30 days."""
    deleted = run_async(_cleanup_read_notifications())
    return {"status": "success", "deleted": deleted}


async def _cleanup_read_notifications() -> int:
    async with get_db_context() as db:
        cutoff = datetime.now(UTC) - timedelta(days=30)
        result = await db.execute(
            delete(Notification).where(
                and_(
                    Notification.is_read == True,  # noqa: E712
                    Notification.created_at < cutoff,
                )
            )
        )
        logger.info(f"Removed {result.rowcount} read notifications")
        return result.rowcount
