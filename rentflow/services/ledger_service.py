"""Ledger store for payment, escrow and deposit state.

The only code path that writes a Payment row. Every status change is a
conditional UPDATE on the expected prior value, followed by an append-only
PaymentLedgerEntry, so concurrent callers can never double-settle.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    AlreadyPaid,
    PersistenceError,
    PreconditionNotMet,
    ValidationError,
)
from rentflow.domain.payment_state import assert_ledger_transition
from rentflow.domain.pricing import PriceBreakdown
from rentflow.models.booking import BookingRequest
from rentflow.models.payment import Payment, PaymentLedgerEntry

logger = logging.getLogger(__name__)


def assert_positive_amount(amount: Decimal, context: str) -> None:
    """Guard: Prevent negative or zero amounts."""
    if amount <= 0:
        raise ValidationError(f"{context}: amount must be positive, got {amount}")


def assert_no_duplicate_ledger_entry(
    existing_entry: PaymentLedgerEntry | None, field: str, to_status: str, payment_id: UUID
) -> None:
    """Guard: Prevent recording the same status change twice."""
    if existing_entry is not None:
        raise ValidationError(
            f"Duplicate {field}={to_status} ledger entry for payment {payment_id}"
        )


class LedgerService:
    """Owns every mutation of Payment rows."""

    async def get_payment_for_booking(
        self, db: AsyncSession, booking_id: UUID
    ) -> Payment | None:
        result = await db.execute(
            select(Payment)
            .where(Payment.booking_request_id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_payment_by_intent(self, db: AsyncSession, intent_id: str) -> Payment | None:
        result = await db.execute(
            select(Payment)
            .where(Payment.external_payment_intent_id == intent_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_pending_payment(
        self,
        db: AsyncSession,
        booking: BookingRequest,
        breakdown: PriceBreakdown,
        intent_id: str,
        gateway: str,
    ) -> Payment:
        """Attach a new external intent and the server breakdown to the booking's payment."""
        assert_positive_amount(breakdown.total, "Payment")

        amounts = {
            "subtotal": breakdown.rental_amount,
            "rental_amount": breakdown.rental_amount,
            "service_fee": breakdown.service_fee,
            "tax": breakdown.tax,
            "insurance_amount": breakdown.insurance_amount,
            "deposit_amount": breakdown.deposit_amount,
            "total_amount": breakdown.total,
            "escrow_amount": breakdown.total,
            "owner_payout_amount": breakdown.rental_amount,
            "currency": settings.currency,
            "escrow_status": "held",
            "deposit_status": "held" if breakdown.deposit_amount > 0 else None,
            "payout_status": "pending",
            "gateway": gateway,
            "external_payment_intent_id": intent_id,
            "failure_reason": None,
        }

        payment = await self.get_payment_for_booking(db, booking.id)
        if payment is None:
            payment = Payment(
                booking_request_id=booking.id,
                renter_id=booking.renter_id,
                owner_id=booking.owner_id,
                payment_status="pending",
                **amounts,
            )
            db.add(payment)
            await db.flush()
            logger.info(f"Created pending payment {payment.id} for booking {booking.id}")
            return payment

        if payment.payment_status == "succeeded":
            raise AlreadyPaid()
        if payment.payment_status != "pending":
            assert_ledger_transition("payment_status", payment.payment_status, "pending")

        await self._compare_and_set(
            db,
            payment,
            "payment_status",
            expected=payment.payment_status,
            target="pending",
            values={**amounts, "payment_status": "pending"},
        )
        logger.info(f"Replaced intent on payment {payment.id} for booking {booking.id}")
        return payment

    async def mark_succeeded(self, db: AsyncSession, payment: Payment) -> bool:
        """Move pending → succeeded. Returns False if another caller already did."""
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.payment_status == "pending")
            .values(payment_status="succeeded", paid_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payment)
        if result.rowcount == 0:
            # refunded is only reachable through succeeded
            if payment.payment_status in ("succeeded", "refunded"):
                return False
            assert_ledger_transition("payment_status", payment.payment_status, "succeeded")

        await self._record(db, payment, "payment_status", "pending", "succeeded", payment.total_amount)
        return True

    async def mark_unsuccessful(
        self, db: AsyncSession, payment: Payment, target: str, reason: str | None = None
    ) -> bool:
        """Move pending → failed/cancelled. Returns False when nothing changed."""
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.payment_status == "pending")
            .values(payment_status=target, failure_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payment)
        return result.rowcount > 0

    async def release_escrow(
        self,
        db: AsyncSession,
        payment: Payment,
        deduction_amount: Decimal = Decimal("0"),
        reason: str = "Rental completed",
    ) -> Payment:
        """Release escrow to the owner and settle the deposit.

        The deposit is claimed when a deduction applies, otherwise released.
        """
        if payment.payment_status != "succeeded":
            raise PreconditionNotMet(
                f"Cannot release escrow for payment in status {payment.payment_status}"
            )
        if deduction_amount > payment.deposit_amount:
            raise PreconditionNotMet(
                f"Deduction {deduction_amount} exceeds deposit {payment.deposit_amount}"
            )

        now = datetime.now(UTC)
        assert_ledger_transition("escrow_status", payment.escrow_status, "released")
        values: dict = {
            "escrow_status": "released",
            "escrow_released_at": now,
            "payout_status": "released",
        }
        deposit_from = payment.deposit_status
        deposit_to = None
        if deposit_from == "held":
            deposit_to = "claimed" if deduction_amount > 0 else "released"
            values["deposit_status"] = deposit_to
            values["deposit_released_at"] = now

        payout_from = payment.payout_status
        await self._compare_and_set(
            db, payment, "escrow_status", expected="held", target="released", values=values
        )

        await self._record(db, payment, "escrow_status", "held", "released", payment.escrow_amount, reason)
        await self._record(
            db, payment, "payout_status", payout_from, "released", payment.owner_payout_amount, reason
        )
        if deposit_to is not None:
            amount = deduction_amount if deposit_to == "claimed" else payment.deposit_amount
            await self._record(db, payment, "deposit_status", "held", deposit_to, amount, reason)

        logger.info(
            f"Released escrow for payment {payment.id} "
            f"(deposit {deposit_from} → {deposit_to or deposit_from})"
        )
        return payment

    async def refund(
        self,
        db: AsyncSession,
        payment: Payment,
        reason: str,
        external_refund_id: str | None = None,
    ) -> Payment:
        """Mark a succeeded payment refunded in full and unwind escrow and deposit."""
        assert_ledger_transition("payment_status", payment.payment_status, "refunded")
        assert_ledger_transition("escrow_status", payment.escrow_status, "refunded")

        now = datetime.now(UTC)
        values: dict = {
            "payment_status": "refunded",
            "escrow_status": "refunded",
            "payout_status": "cancelled",
            "refund_amount": payment.total_amount,
            "refund_reason": reason,
            "external_refund_id": external_refund_id,
            "refunded_at": now,
        }
        deposit_refunded = payment.deposit_status == "held"
        if deposit_refunded:
            values["deposit_status"] = "refunded"
            values["deposit_released_at"] = now

        payout_from = payment.payout_status
        await self._compare_and_set(
            db, payment, "escrow_status", expected="held", target="refunded", values=values
        )

        await self._record(db, payment, "payment_status", "succeeded", "refunded", payment.total_amount, reason)
        await self._record(db, payment, "escrow_status", "held", "refunded", payment.escrow_amount, reason)
        await self._record(db, payment, "payout_status", payout_from, "cancelled", Decimal("0"), reason)
        if deposit_refunded:
            await self._record(
                db, payment, "deposit_status", "held", "refunded", payment.deposit_amount, reason
            )

        logger.info(f"Refunded payment {payment.id}: {payment.total_amount} ({reason})")
        return payment

    async def _compare_and_set(
        self,
        db: AsyncSession,
        payment: Payment,
        field: str,
        expected: str,
        target: str,
        values: dict,
    ) -> None:
        column = getattr(Payment, field)
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, column == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payment)
        if result.rowcount == 0:
            # Lost the race; report what the winner left behind.
            assert_ledger_transition(field, getattr(payment, field), target)
            raise PersistenceError(f"Conditional update of payment {payment.id} did not apply")

    async def _record(
        self,
        db: AsyncSession,
        payment: Payment,
        field: str,
        from_status: str | None,
        to_status: str,
        amount: Decimal,
        reason: str | None = None,
    ) -> PaymentLedgerEntry:
        existing = await db.execute(
            select(PaymentLedgerEntry).where(
                PaymentLedgerEntry.payment_id == payment.id,
                PaymentLedgerEntry.field == field,
                PaymentLedgerEntry.to_status == to_status,
            )
        )
        assert_no_duplicate_ledger_entry(existing.scalar_one_or_none(), field, to_status, payment.id)

        entry = PaymentLedgerEntry(
            payment_id=payment.id,
            booking_request_id=payment.booking_request_id,
            field=field,
            from_status=from_status,
            to_status=to_status,
            amount=amount,
            reason=reason,
        )
        db.add(entry)
        return entry


# Singleton instance
ledger_service = LedgerService()
