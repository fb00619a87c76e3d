"""Booking state machine.

Every booking status change goes through ``BookingStateMachine``. A transition
is authorized against the caller's role on the booking, checked against the
transition graph, then written with a conditional UPDATE on the status the
caller observed. Only the caller whose UPDATE matched a row proceeds.

The status write is committed before any escrow, deposit or notification side
effect runs. Side effects commit on their own; a failure is logged and left
for reconciliation without touching the committed status.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.exceptions import (
    DatesNotAvailable,
    Forbidden,
    NotFoundError,
    PersistenceError,
    PreconditionNotMet,
    PricingMismatch,
)
from rentflow.core.permissions import SYSTEM_ACTOR, Actor, require_booking_role
from rentflow.domain.booking_state import (
    AWAITING_PICKUP_INSPECTION,
    AWAITING_RETURN_INSPECTION,
    PENDING,
    SYSTEM,
    TRANSITION_RULES,
    TransitionRule,
    assert_action_allowed,
)
from rentflow.domain.pricing import DepositPolicy, compute_total, verify_client_total
from rentflow.models.booking import BookingRequest, Equipment, Inspection, RentalEvent
from rentflow.schemas.booking import BookingCreate, InspectionSubmit
from rentflow.schemas.transition import (
    CancelPayload,
    ReportDamagePayload,
    ResolveDisputePayload,
    TransitionResponse,
)
from rentflow.services.conflict_service import ConflictService, conflict_service
from rentflow.services.dispute_service import DisputeService, dispute_service
from rentflow.services.inspection_service import (
    PICKUP,
    RETURN,
    InspectionService,
    inspection_service,
)
from rentflow.services.ledger_service import LedgerService, ledger_service
from rentflow.services.notification_service import NotificationService, notification_service
from rentflow.services.settlement_service import SettlementService, settlement_service

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "Booking cancelled"


def _today() -> date:
    return datetime.now(UTC).date()


@dataclass(frozen=True)
class _BookingView:
    """Values read before commit, safe to use after a rollback."""

    id: UUID
    renter_id: UUID
    owner_id: UUID
    title: str


class BookingStateMachine:
    """Applies booking transitions."""

    def __init__(
        self,
        ledger: LedgerService | None = None,
        settlement: SettlementService | None = None,
        notifier: NotificationService | None = None,
        inspections: InspectionService | None = None,
        conflicts: ConflictService | None = None,
        disputes: DisputeService | None = None,
        clock: Callable[[], date] | None = None,
    ) -> None:
        self.ledger = ledger or ledger_service
        self.settlement = settlement or settlement_service
        self.notifier = notifier or notification_service
        self.inspections = inspections or inspection_service
        self.conflicts = conflicts or conflict_service
        self.disputes = disputes or dispute_service
        self.clock = clock or _today

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_booking(self, db: AsyncSession, booking_id: UUID) -> BookingRequest:
        """Load a booking with fresh column values, or raise NotFoundError."""
        result = await db.execute(
            select(BookingRequest)
            .where(BookingRequest.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = result.unique().scalar_one_or_none()
        if booking is None:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def get_booking_for_actor(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> BookingRequest:
        booking = await self.get_booking(db, booking_id)
        if not actor.is_admin and actor.id not in (booking.renter_id, booking.owner_id):
            raise Forbidden("Not authorized to view this booking")
        return booking

    # ------------------------------------------------------------------
    # Requests and inspections
    # ------------------------------------------------------------------

    async def create_request(
        self, db: AsyncSession, actor: Actor, data: BookingCreate
    ) -> BookingRequest:
        """Open a pending booking request for the actor as renter."""
        equipment = await db.get(Equipment, data.equipment_id)
        if equipment is None:
            raise NotFoundError("Equipment", str(data.equipment_id))
        if actor.id is None:
            raise Forbidden("A renter account is required to book")
        if equipment.owner_id == actor.id:
            raise Forbidden("Cannot book your own equipment")
        if not equipment.is_available:
            raise PreconditionNotMet("Equipment is not available for rent")

        breakdown = compute_total(
            equipment.daily_rate,
            data.start_date,
            data.end_date,
            data.insurance_type,
            DepositPolicy(equipment.damage_deposit_amount, equipment.damage_deposit_percentage),
        )
        try:
            verify_client_total(breakdown, data.client_total)
        except PricingMismatch:
            logger.warning(
                f"Pricing mismatch on new request for equipment {equipment.id}: "
                f"client={data.client_total} server={breakdown.total}"
            )
            raise

        if not await self.conflicts.is_available(
            db, equipment.id, data.start_date, data.end_date
        ):
            raise DatesNotAvailable()

        booking = BookingRequest(
            equipment_id=equipment.id,
            renter_id=actor.id,
            owner_id=equipment.owner_id,
            start_date=data.start_date,
            end_date=data.end_date,
            status=PENDING,
            total_amount=breakdown.total,
            insurance_type=breakdown.insurance_type,
            insurance_cost=breakdown.insurance_amount,
            damage_deposit_amount=breakdown.deposit_amount,
            status_updated_at=datetime.now(UTC),
        )
        db.add(booking)
        await self._commit(db, "create booking request")
        await db.refresh(booking)
        logger.info(f"Booking request {booking.id} created for equipment {equipment.id}")
        return booking

    async def record_inspection(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        data: InspectionSubmit,
    ) -> Inspection:
        """Record the renter's pickup or return inspection."""
        booking = await self.get_booking(db, booking_id)
        if actor.id != booking.renter_id:
            raise Forbidden("Only the renter can submit inspections", required_role="renter")

        expected = AWAITING_PICKUP_INSPECTION if data.inspection_type == PICKUP else AWAITING_RETURN_INSPECTION
        if booking.status != expected:
            raise PreconditionNotMet(
                f"{data.inspection_type.capitalize()} inspection can only be recorded "
                f"while the booking is {expected}",
                current_status=booking.status,
            )

        inspection = await self.inspections.record_renter_inspection(
            db, booking.id, data.inspection_type, data.notes
        )
        await self._commit(db, "record inspection")
        return inspection

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        payload: Any,
    ) -> TransitionResponse:
        """Dispatch a tagged transition payload."""
        handlers: dict[str, Callable[..., Awaitable[TransitionResponse]]] = {
            "complete_payment": lambda: self.complete_payment(db, booking_id, actor),
            "complete_pickup_inspection": lambda: self.complete_pickup_inspection(db, booking_id, actor),
            "start_rental": lambda: self.start_rental(db, booking_id, actor),
            "initiate_return": lambda: self.initiate_return(db, booking_id, actor),
            "complete_return_inspection": lambda: self.complete_return_inspection(db, booking_id, actor),
            "owner_confirm": lambda: self.owner_confirm(db, booking_id, actor),
            "owner_report_damage": lambda: self.owner_report_damage(db, booking_id, actor, payload),
            "resolve_dispute": lambda: self.resolve_dispute(db, booking_id, actor, payload),
            "cancel": lambda: self.cancel(db, booking_id, actor, payload),
        }
        return await handlers[payload.action]()

    async def complete_payment(
        self, db: AsyncSession, booking_id: UUID, actor: Actor = SYSTEM_ACTOR
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "complete_payment")
        payment = await self.ledger.get_payment_for_booking(db, booking.id)
        if payment is None or payment.payment_status != "succeeded":
            raise PreconditionNotMet("Payment not completed", current_status=booking.status)

        view = self._view(booking)
        previous = await self._write_status(db, booking, rule)
        await self._commit(db, "complete payment")

        await self.notifier.notify(
            view.owner_id,
            NotificationService.BOOKING_CONFIRMED,
            "New Booking Confirmed",
            f"Payment received for {view.title}. Awaiting pickup inspection.",
            related_entity_id=view.id,
        )
        return self._response(view, previous, rule)

    async def complete_pickup_inspection(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "complete_pickup_inspection")
        if not await self.inspections.is_verified_by_renter(db, booking.id, PICKUP):
            raise PreconditionNotMet("Pickup inspection not completed", current_status=booking.status)

        view = self._view(booking)
        previous = await self._write_status(db, booking, rule)
        await self._commit(db, "complete pickup inspection")

        await self.notifier.notify(
            view.owner_id,
            "pickup_inspection_complete",
            "Pickup Inspection Complete",
            f"The renter completed the pickup inspection for {view.title}.",
            related_entity_id=view.id,
        )
        return self._response(view, previous, rule)

    async def start_rental(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> TransitionResponse:
        booking, rule, role = await self._begin(db, booking_id, actor, "start_rental")
        today = self.clock()
        if today < booking.start_date:
            raise PreconditionNotMet(
                f"Start date ({booking.start_date.isoformat()}) not reached yet",
                current_status=booking.status,
            )

        auto = role == SYSTEM
        view = self._view(booking)
        previous = await self._write_status(db, booking, rule, activated_at=datetime.now(UTC))
        db.add(
            RentalEvent(
                booking_id=view.id,
                event_type="rental_started",
                event_data={"auto_activated": True} if auto else {"manual_activation": True},
            )
        )
        await self._commit(db, "start rental")

        if auto:
            for user_id in (view.renter_id, view.owner_id):
                await self.notifier.notify(
                    user_id,
                    NotificationService.RENTAL_STARTED,
                    "Rental Started",
                    f"Your rental for {view.title} is now active.",
                    related_entity_id=view.id,
                    priority=NotificationService.HIGH,
                )
        return self._response(view, previous, rule)

    async def initiate_return(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "initiate_return")
        view = self._view(booking)
        previous = await self._write_status(db, booking, rule)
        await self._commit(db, "initiate return")
        return self._response(view, previous, rule)

    async def complete_return_inspection(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "complete_return_inspection")
        if not await self.inspections.is_verified_by_renter(db, booking.id, RETURN):
            raise PreconditionNotMet("Return inspection not completed", current_status=booking.status)

        view = self._view(booking)
        previous = await self._write_status(db, booking, rule)
        await self._commit(db, "complete return inspection")

        await self.notifier.notify(
            view.owner_id,
            "return_inspection_ready",
            "Return Inspection Ready for Review",
            f"The renter has returned {view.title}. Please review the return inspection.",
            related_entity_id=view.id,
            priority=NotificationService.HIGH,
        )
        return self._response(view, previous, rule)

    async def owner_confirm(
        self, db: AsyncSession, booking_id: UUID, actor: Actor
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "owner_confirm")
        view = self._view(booking)
        previous = await self._write_status(db, booking, rule, completed_at=datetime.now(UTC))
        await self.inspections.mark_verified_by_owner(db, view.id, RETURN)
        db.add(
            RentalEvent(
                booking_id=view.id,
                event_type="rental_completed",
                event_data={"confirmed_by_owner": True},
            )
        )
        await self._commit(db, "owner confirm")

        await self._release_escrow(db, view, Decimal("0"), "Rental completed")
        await self.notifier.notify(
            view.renter_id,
            NotificationService.BOOKING_COMPLETED,
            "Rental Completed",
            f"Your rental for {view.title} is complete. Your deposit has been released.",
            related_entity_id=view.id,
        )
        return self._response(view, previous, rule)

    async def owner_report_damage(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        payload: ReportDamagePayload,
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "owner_report_damage")
        description = (payload.description or "").strip()
        if not description:
            raise PreconditionNotMet("Damage description required", current_status=booking.status)

        view = self._view(booking)
        previous = await self._write_status(db, booking, rule, disputed_at=datetime.now(UTC))
        claim = await self.disputes.open_claim(
            db, view.id, actor.id, description, payload.estimated_cost
        )
        db.add(
            RentalEvent(
                booking_id=view.id,
                event_type="dispute_opened",
                event_data={
                    "claim_id": str(claim.id),
                    "estimated_cost": str(payload.estimated_cost),
                },
            )
        )
        await self._commit(db, "report damage")

        await self.notifier.notify(
            view.renter_id,
            NotificationService.DAMAGE_CLAIM,
            "Damage Claim Filed",
            f"The owner reported damage to {view.title}. An admin will review the claim.",
            related_entity_id=view.id,
            priority=NotificationService.CRITICAL,
        )
        return self._response(view, previous, rule)

    async def resolve_dispute(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        payload: ResolveDisputePayload,
    ) -> TransitionResponse:
        booking, rule, _ = await self._begin(db, booking_id, actor, "resolve_dispute")
        deduction = payload.deduction_amount
        if deduction > 0:
            payment = await self.ledger.get_payment_for_booking(db, booking.id)
            held = payment.deposit_amount if payment is not None else Decimal("0")
            if deduction > held:
                raise PreconditionNotMet(
                    f"Deduction {deduction} exceeds held deposit {held}",
                    current_status=booking.status,
                )

        view = self._view(booking)
        previous = await self._write_status(db, booking, rule, completed_at=datetime.now(UTC))
        claims = await self.disputes.resolve_open_claims(db, view.id, deduction, payload.resolution)
        db.add(
            RentalEvent(
                booking_id=view.id,
                event_type="dispute_resolved",
                event_data={
                    "deduction_amount": str(deduction),
                    "claims": [str(claim.id) for claim in claims],
                },
            )
        )
        await self._commit(db, "resolve dispute")

        await self._release_escrow(db, view, deduction, "Dispute resolved")
        for user_id in (view.renter_id, view.owner_id):
            await self.notifier.notify(
                user_id,
                NotificationService.BOOKING_COMPLETED,
                "Dispute Resolved",
                f"The damage claim for {view.title} has been resolved.",
                related_entity_id=view.id,
            )
        return self._response(view, previous, rule)

    async def cancel(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor: Actor,
        payload: CancelPayload | None = None,
    ) -> TransitionResponse:
        booking, rule, role = await self._begin(db, booking_id, actor, "cancel")
        reason = (payload.reason if payload else None) or DEFAULT_CANCELLATION_REASON

        view = self._view(booking)
        previous = await self._write_status(
            db, booking, rule, cancelled_at=datetime.now(UTC), cancellation_reason=reason
        )
        db.add(
            RentalEvent(
                booking_id=view.id,
                event_type="booking_cancelled",
                event_data={"cancelled_by": role, "reason": reason},
            )
        )
        await self._commit(db, "cancel booking")

        payment = await self.ledger.get_payment_for_booking(db, view.id)
        if payment is not None and payment.payment_status == "succeeded":
            await self._side_effect(
                db, view, "refund", lambda: self.settlement.refund(db, payment, reason)
            )

        other_party = view.owner_id if actor.id == view.renter_id else view.renter_id
        await self.notifier.notify(
            other_party,
            NotificationService.BOOKING_CANCELLED,
            "Booking Cancelled",
            f"The booking for {view.title} was cancelled: {reason}",
            related_entity_id=view.id,
        )
        return self._response(view, previous, rule)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _begin(
        self, db: AsyncSession, booking_id: UUID, actor: Actor, action: str
    ) -> tuple[BookingRequest, TransitionRule, str]:
        booking = await self.get_booking(db, booking_id)
        rule = TRANSITION_RULES[action]
        role = require_booking_role(actor, booking.renter_id, booking.owner_id, rule.actors, action)
        assert_action_allowed(rule, booking.status)
        return booking, rule, role

    async def _write_status(
        self,
        db: AsyncSession,
        booking: BookingRequest,
        rule: TransitionRule,
        **values: Any,
    ) -> str:
        """Conditionally move the booking to the rule's target. Returns the prior status."""
        expected = booking.status
        result = await db.execute(
            update(BookingRequest)
            .where(BookingRequest.id == booking.id, BookingRequest.status == expected)
            .values(status=rule.target, status_updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.get_booking(db, booking.id)
            logger.info(
                f"Lost race on booking {booking.id}: {rule.action} expected {expected}, "
                f"found {current.status}"
            )
            assert_action_allowed(rule, current.status)
            raise PersistenceError()

        logger.info(f"Booking {booking.id}: {expected} → {rule.target} ({rule.action})")
        return expected

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Failed to {operation}: {e}", exc_info=True)
            raise PersistenceError() from e

    async def _release_escrow(
        self, db: AsyncSession, view: _BookingView, deduction: Decimal, reason: str
    ) -> None:
        payment = await self.ledger.get_payment_for_booking(db, view.id)
        if payment is None or payment.payment_status != "succeeded":
            logger.warning(f"No settled payment to release for booking {view.id}")
            return
        await self._side_effect(
            db,
            view,
            "escrow release",
            lambda: self.settlement.release(db, payment, deduction, reason),
        )

    async def _side_effect(
        self,
        db: AsyncSession,
        view: _BookingView,
        name: str,
        effect: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Run and commit a post-transition side effect. Failures are logged, not raised."""
        try:
            await effect()
            await db.commit()
            return True
        except Exception:
            await db.rollback()
            logger.exception(f"{name.capitalize()} failed for booking {view.id}; left for reconciliation")
            return False

    @staticmethod
    def _view(booking: BookingRequest) -> _BookingView:
        title = booking.equipment.title if booking.equipment is not None else "your rental"
        return _BookingView(booking.id, booking.renter_id, booking.owner_id, title)

    @staticmethod
    def _response(view: _BookingView, previous: str, rule: TransitionRule) -> TransitionResponse:
        return TransitionResponse(booking_id=view.id, status=rule.target, previous_status=previous)


# Singleton instance
booking_state_machine = BookingStateMachine()
