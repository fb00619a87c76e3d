"""Settlement service.

Coordinates money movements that need both the payment provider and the
ledger: full refunds and escrow release. The provider is always called first;
the ledger only records what the provider confirmed.
"""

import logging
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import Forbidden, PreconditionNotMet
from rentflow.core.permissions import Actor
from rentflow.domain.booking_state import COMPLETED
from rentflow.domain.payment_state import assert_ledger_transition
from rentflow.domain.pricing import to_cents
from rentflow.models.booking import BookingRequest
from rentflow.models.payment import Payment
from rentflow.services.gateway_service import GatewayService, gateway_service
from rentflow.services.ledger_service import LedgerService, ledger_service

logger = logging.getLogger(__name__)


class SettlementService:
    """Service for refunds and escrow release."""

    def __init__(
        self,
        ledger: LedgerService | None = None,
        gateways: GatewayService | None = None,
    ) -> None:
        self.ledger = ledger or ledger_service
        self.gateways = gateways or gateway_service

    async def refund(self, db: AsyncSession, payment: Payment, reason: str) -> Payment:
        """Refund a succeeded payment in full through the provider, then record it.

        Does not commit.
        """
        assert_ledger_transition("payment_status", payment.payment_status, "refunded")
        assert_ledger_transition("escrow_status", payment.escrow_status, "refunded")

        refund_id = None
        if payment.external_payment_intent_id:
            result = await self.gateways.process_refund(
                transaction_id=payment.external_payment_intent_id,
                amount=to_cents(payment.total_amount),
                reason=reason,
                gateway_type=payment.gateway,
            )
            refund_id = result.refund_id

        return await self.ledger.refund(db, payment, reason, external_refund_id=refund_id)

    async def release(
        self,
        db: AsyncSession,
        payment: Payment,
        deduction_amount: Decimal = Decimal("0"),
        reason: str = "Rental completed",
    ) -> Payment:
        """Release escrow to the owner, claiming ``deduction_amount`` from the deposit.

        Does not commit.
        """
        return await self.ledger.release_escrow(
            db, payment, deduction_amount=deduction_amount, reason=reason
        )

    async def release_for_booking(
        self,
        db: AsyncSession,
        booking: BookingRequest,
        actor: Actor,
    ) -> Payment:
        """Manual escrow release for a completed booking.

        Owners must wait out the grace period after the end date; admins may
        release immediately.
        """
        if not actor.is_admin and actor.id != booking.owner_id:
            raise Forbidden("Only the owner or an admin can release escrow", required_role="owner")

        if booking.status != COMPLETED:
            raise PreconditionNotMet(
                "Escrow can only be released for completed bookings",
                current_status=booking.status,
            )

        payment = await self.ledger.get_payment_for_booking(db, booking.id)
        if payment is None:
            raise PreconditionNotMet("No payment recorded for this booking")

        if not actor.is_admin:
            grace = timedelta(hours=settings.escrow_release_grace_hours)
            release_after = datetime.combine(booking.end_date, time.min, tzinfo=UTC) + grace
            if datetime.now(UTC) < release_after:
                raise PreconditionNotMet(
                    f"Escrow can be released after {release_after.isoformat()}",
                    current_status=booking.status,
                )

        await self.release(db, payment, reason="Manual escrow release")
        await db.commit()
        logger.info(f"Escrow released for booking {booking.id} by {actor.id or 'system'}")
        return payment

    async def refund_for_booking(
        self,
        db: AsyncSession,
        booking: BookingRequest,
        reason: str,
    ) -> Payment:
        """Admin refund of a booking's payment. Does not change booking status."""
        payment = await self.ledger.get_payment_for_booking(db, booking.id)
        if payment is None:
            raise PreconditionNotMet("No payment recorded for this booking")

        await self.refund(db, payment, reason)
        await db.commit()
        logger.info(f"Refunded booking {booking.id}: {reason}")
        return payment


# Singleton instance
settlement_service = SettlementService()
