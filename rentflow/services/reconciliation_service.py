"""Reconciliation jobs.

Sweeps for bookings whose follow-up work did not happen: rentals due to
start, completed rentals with escrow still held, and cancelled bookings whose
payment settled anyway. Each booking is processed on its own; one failure is
logged and the sweep moves on.
"""

import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.exceptions import AppException
from rentflow.core.permissions import SYSTEM_ACTOR
from rentflow.domain.booking_state import AWAITING_START_DATE, CANCELLED, COMPLETED
from rentflow.models.booking import BookingRequest, RentalEvent
from rentflow.models.payment import Payment
from rentflow.services.booking_state_machine import BookingStateMachine, booking_state_machine
from rentflow.services.settlement_service import SettlementService, settlement_service

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Service for periodic booking and escrow reconciliation."""

    def __init__(
        self,
        state_machine: BookingStateMachine | None = None,
        settlement: SettlementService | None = None,
    ) -> None:
        self.state_machine = state_machine or booking_state_machine
        self.settlement = settlement or settlement_service

    async def activate_due_rentals(self, db: AsyncSession, today: date | None = None) -> dict[str, int]:
        """Start every rental whose start date has arrived."""
        today = today or datetime.now(UTC).date()
        result = await db.execute(
            select(BookingRequest.id).where(
                BookingRequest.status == AWAITING_START_DATE,
                BookingRequest.start_date <= today,
            )
        )
        booking_ids = list(result.scalars().all())

        summary = {"found": len(booking_ids), "activated": 0, "failed": 0}
        for booking_id in booking_ids:
            try:
                await self.state_machine.start_rental(db, booking_id, SYSTEM_ACTOR)
                summary["activated"] += 1
            except AppException as e:
                await db.rollback()
                summary["failed"] += 1
                logger.error(f"Failed to activate booking {booking_id}: {e.detail}")
            except Exception:
                await db.rollback()
                summary["failed"] += 1
                logger.exception(f"Failed to activate booking {booking_id}")

        logger.info(f"Rental activation: {summary}")
        return summary

    async def release_stuck_escrow(self, db: AsyncSession) -> dict[str, int]:
        """Release escrow for completed bookings where the release never landed."""
        payment_ids = await self._payments_with_held_escrow(db, COMPLETED)

        summary = {"found": len(payment_ids), "released": 0, "failed": 0}
        for payment_id in payment_ids:
            try:
                payment = await db.get(Payment, payment_id, populate_existing=True)
                deduction = await self._resolved_deduction(db, payment.booking_request_id)
                await self.settlement.release(db, payment, deduction, reason="Reconciliation release")
                await db.commit()
                summary["released"] += 1
            except Exception:
                await db.rollback()
                summary["failed"] += 1
                logger.exception(f"Failed to release escrow for payment {payment_id}")

        logger.info(f"Escrow release reconciliation: {summary}")
        return summary

    async def refund_cancelled_settlements(self, db: AsyncSession) -> dict[str, int]:
        """Refund payments that settled for bookings that are already cancelled."""
        payment_ids = await self._payments_with_held_escrow(db, CANCELLED)

        summary = {"found": len(payment_ids), "refunded": 0, "failed": 0}
        for payment_id in payment_ids:
            try:
                payment = await db.get(Payment, payment_id, populate_existing=True)
                await self.settlement.refund(db, payment, "Settlement received after cancellation")
                await db.commit()
                summary["refunded"] += 1
            except Exception:
                await db.rollback()
                summary["failed"] += 1
                logger.exception(f"Failed to refund cancelled settlement for payment {payment_id}")

        logger.info(f"Cancelled settlement reconciliation: {summary}")
        return summary

    async def run_all(self, db: AsyncSession) -> dict[str, dict[str, int]]:
        return {
            "activation": await self.activate_due_rentals(db),
            "escrow_release": await self.release_stuck_escrow(db),
            "cancelled_refunds": await self.refund_cancelled_settlements(db),
        }

    async def _payments_with_held_escrow(
        self, db: AsyncSession, booking_status: str
    ) -> list[UUID]:
        result = await db.execute(
            select(Payment.id)
            .join(BookingRequest, BookingRequest.id == Payment.booking_request_id)
            .where(
                BookingRequest.status == booking_status,
                Payment.payment_status == "succeeded",
                Payment.escrow_status == "held",
            )
        )
        return list(result.scalars().all())

    async def _resolved_deduction(self, db: AsyncSession, booking_id: UUID) -> Decimal:
        """Deposit deduction decided when the booking's dispute was resolved, or zero."""
        result = await db.execute(
            select(RentalEvent.event_data)
            .where(
                RentalEvent.booking_id == booking_id,
                RentalEvent.event_type == "dispute_resolved",
            )
            .order_by(RentalEvent.created_at.desc())
            .limit(1)
        )
        event_data = result.scalar_one_or_none()
        if not event_data:
            return Decimal("0")
        return Decimal(event_data.get("deduction_amount", "0"))


# Singleton instance
reconciliation_service = ReconciliationService()
