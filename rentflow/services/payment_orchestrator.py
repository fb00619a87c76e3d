"""Payment intent orchestrator.

Creates or reuses a provider payment intent for a pending booking and turns
provider settlement callbacks into exactly one ``complete_payment``
transition, however many times the callback is delivered.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    AlreadyInState,
    AlreadyPaid,
    DatesNotAvailable,
    Forbidden,
    InvalidStateTransition,
    PaymentProviderError,
    PreconditionNotMet,
    PricingMismatch,
)
from rentflow.core.permissions import SYSTEM_ACTOR, Actor
from rentflow.domain.booking_state import CANCELLED, PENDING
from rentflow.domain.pricing import DepositPolicy, compute_total, verify_client_total
from rentflow.gateways.base import FINAL_INTENT_STATUSES
from rentflow.models.booking import RentalEvent
from rentflow.models.payment import Payment
from rentflow.schemas.payment import PaymentIntentResponse, SettlementResult
from rentflow.services.booking_state_machine import BookingStateMachine, booking_state_machine
from rentflow.services.conflict_service import ConflictService, conflict_service
from rentflow.services.gateway_service import GatewayService, gateway_service
from rentflow.services.ledger_service import LedgerService, ledger_service
from rentflow.services.settlement_service import SettlementService, settlement_service

logger = logging.getLogger(__name__)

SETTLEMENT_AFTER_CANCEL_REASON = "Settlement received after cancellation"

# Settlement outcomes
SETTLED = "settled"
DUPLICATE = "duplicate"
REFUNDED_AFTER_CANCEL = "refunded_after_cancel"
REFUND_PENDING = "refund_pending"
FAILED = "failed"
IGNORED = "ignored"

# Provider status → payment_status for unsuccessful intents
_UNSUCCESSFUL_STATUSES = {
    "failed": "failed",
    "canceled": "cancelled",
    "cancelled": "cancelled",
}


def _intent_response(
    payment: Payment, client_secret: str | None, reused: bool
) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        payment_id=payment.id,
        payment_intent_id=payment.external_payment_intent_id,
        client_secret=client_secret,
        reused=reused,
        currency=payment.currency,
        rental_amount=payment.rental_amount,
        service_fee=payment.service_fee,
        insurance_amount=payment.insurance_amount,
        deposit_amount=payment.deposit_amount,
        total_amount=payment.total_amount,
    )


class PaymentOrchestrator:
    """Service for payment intents and settlement."""

    def __init__(
        self,
        state_machine: BookingStateMachine | None = None,
        ledger: LedgerService | None = None,
        gateways: GatewayService | None = None,
        conflicts: ConflictService | None = None,
        settlement: SettlementService | None = None,
    ) -> None:
        self.state_machine = state_machine or booking_state_machine
        self.ledger = ledger or ledger_service
        self.gateways = gateways or gateway_service
        self.conflicts = conflicts or conflict_service
        self.settlement = settlement or settlement_service

    async def create_or_reuse_intent(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        client_total: Decimal | None = None,
    ) -> PaymentIntentResponse:
        """Return a payable intent for a pending booking.

        An open intent already attached to the booking is reused as is.
        Otherwise the server price is computed, checked against the client's
        figure and the calendar, and a new intent is created for it.
        """
        booking = await self.state_machine.get_booking(db, booking_id)
        equipment = booking.equipment

        if actor.id is None or actor.id != booking.renter_id:
            raise Forbidden("Only the renter can pay for this booking", required_role="renter")
        if actor.id == equipment.owner_id:
            raise Forbidden("Cannot book your own equipment")
        if booking.status != PENDING:
            raise InvalidStateTransition(booking.status, "create payment intent", [PENDING])
        if not equipment.is_available:
            raise PreconditionNotMet("Equipment is not available for rent", current_status=booking.status)

        payment = await self.ledger.get_payment_for_booking(db, booking.id)
        if payment is not None and payment.payment_status == "succeeded":
            raise AlreadyPaid()

        replaces_intent = payment.external_payment_intent_id if payment is not None else None
        if (
            payment is not None
            and payment.payment_status == "pending"
            and payment.external_payment_intent_id
        ):
            existing = await self.gateways.retrieve_payment(
                payment.external_payment_intent_id, gateway_type=payment.gateway
            )
            if existing.success and existing.status == "succeeded":
                # Charged already but the webhook has not landed yet
                logger.warning(
                    f"Intent {payment.external_payment_intent_id} already succeeded for booking "
                    f"{booking.id}; settling it now"
                )
                await self.on_settlement_confirmed(db, payment.external_payment_intent_id, "succeeded")
                raise AlreadyPaid()
            if existing.success and existing.status not in FINAL_INTENT_STATUSES:
                logger.info(
                    f"Reusing intent {payment.external_payment_intent_id} for booking {booking.id}"
                )
                return _intent_response(payment, existing.client_secret, reused=True)

        breakdown = compute_total(
            equipment.daily_rate,
            booking.start_date,
            booking.end_date,
            booking.insurance_type,
            DepositPolicy(equipment.damage_deposit_amount, equipment.damage_deposit_percentage),
        )
        try:
            verify_client_total(breakdown, client_total)
        except PricingMismatch:
            logger.warning(
                f"Pricing mismatch for booking {booking.id}: "
                f"client={client_total} server={breakdown.total}"
            )
            raise

        if not await self.conflicts.is_available(
            db,
            booking.equipment_id,
            booking.start_date,
            booking.end_date,
            exclude_booking_id=booking.id,
        ):
            raise DatesNotAvailable()

        result = await self.gateways.create_payment(
            amount=breakdown.total_cents,
            currency=settings.currency,
            reference_id=str(booking.id),
            description=f"Rental of {equipment.title}",
            metadata={
                "booking_request_id": str(booking.id),
                "renter_id": str(booking.renter_id),
                "owner_id": str(booking.owner_id),
                "rental_amount": str(breakdown.rental_amount),
                "deposit_amount": str(breakdown.deposit_amount),
                "insurance_amount": str(breakdown.insurance_amount),
                "insurance_type": breakdown.insurance_type,
                "replaces_intent": replaces_intent or "",
            },
        )

        payment = await self.ledger.upsert_pending_payment(
            db,
            booking,
            breakdown,
            intent_id=result.transaction_id,
            gateway=self.gateways.default_gateway_type,
        )
        await db.commit()
        logger.info(
            f"Created intent {result.transaction_id} for booking {booking.id} "
            f"({breakdown.total} {settings.currency})"
        )
        return _intent_response(payment, result.client_secret, reused=False)

    async def on_settlement_confirmed(
        self, db: AsyncSession, intent_id: str, status: str
    ) -> SettlementResult:
        """Apply a provider settlement callback. Safe to call any number of times."""
        payment = await self.ledger.get_payment_by_intent(db, intent_id)
        if payment is None:
            logger.warning(f"Settlement for unknown intent {intent_id} ignored")
            return SettlementResult(intent_id=intent_id, outcome=IGNORED)

        booking_id = payment.booking_request_id

        if status in _UNSUCCESSFUL_STATUSES:
            changed = await self.ledger.mark_unsuccessful(
                db, payment, _UNSUCCESSFUL_STATUSES[status], reason=f"Provider reported {status}"
            )
            await db.commit()
            if changed:
                logger.info(f"Payment {payment.id} marked {payment.payment_status}")
            return SettlementResult(intent_id=intent_id, outcome=FAILED if changed else DUPLICATE)

        if status != "succeeded":
            logger.info(f"Ignoring intent {intent_id} status {status}")
            return SettlementResult(intent_id=intent_id, outcome=IGNORED)

        won = await self.ledger.mark_succeeded(db, payment)
        await db.commit()
        booking = await self.state_machine.get_booking(db, booking_id)
        if not won:
            logger.info(f"Duplicate settlement for intent {intent_id}")
            return SettlementResult(intent_id=intent_id, outcome=DUPLICATE, booking_status=booking.status)

        if booking.status == CANCELLED:
            return await self._refund_after_cancel(db, payment, intent_id)

        try:
            response = await self.state_machine.complete_payment(db, booking_id, SYSTEM_ACTOR)
            booking_status = response.status
        except AlreadyInState as e:
            booking_status = e.current_status
        return SettlementResult(intent_id=intent_id, outcome=SETTLED, booking_status=booking_status)

    async def confirm_manual_payment(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> SettlementResult:
        """Admin confirmation of an offline payment."""
        if not actor.is_admin:
            raise Forbidden("Only admins can confirm manual payments", required_role="admin")
        payment = await self.ledger.get_payment_for_booking(db, booking_id)
        if payment is None or not payment.external_payment_intent_id:
            raise PreconditionNotMet("No payment intent recorded for this booking")
        return await self.on_settlement_confirmed(db, payment.external_payment_intent_id, "succeeded")

    async def release_escrow(self, db: AsyncSession, booking_id: UUID, actor: Actor) -> Payment:
        booking = await self.state_machine.get_booking(db, booking_id)
        return await self.settlement.release_for_booking(db, booking, actor)

    async def refund_payment(
        self, db: AsyncSession, booking_id: UUID, actor: Actor, reason: str
    ) -> Payment:
        if not actor.is_admin:
            raise Forbidden("Only admins can issue refunds", required_role="admin")
        booking = await self.state_machine.get_booking(db, booking_id)
        return await self.settlement.refund_for_booking(db, booking, reason)

    async def _refund_after_cancel(
        self, db: AsyncSession, payment: Payment, intent_id: str
    ) -> SettlementResult:
        booking_id = payment.booking_request_id
        logger.warning(f"Settlement for intent {intent_id} arrived after booking {booking_id} was cancelled")
        try:
            await self.settlement.refund(db, payment, SETTLEMENT_AFTER_CANCEL_REASON)
            db.add(
                RentalEvent(
                    booking_id=booking_id,
                    event_type="settlement_after_cancel",
                    event_data={"intent_id": intent_id, "refunded": True},
                )
            )
            await db.commit()
        except PaymentProviderError:
            await db.rollback()
            logger.exception(f"Refund after cancellation failed for booking {booking_id}; left for reconciliation")
            return SettlementResult(intent_id=intent_id, outcome=REFUND_PENDING, booking_status=CANCELLED)
        return SettlementResult(intent_id=intent_id, outcome=REFUNDED_AFTER_CANCEL, booking_status=CANCELLED)


# Singleton instance
payment_orchestrator = PaymentOrchestrator()
