from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from rentflow.core.exceptions import (
    AlreadyInState,
    DatesNotAvailable,
    Forbidden,
    InvalidStateTransition,
    NotFoundError,
    PreconditionNotMet,
    PricingMismatch,
)
from rentflow.core.permissions import SYSTEM_ACTOR, Actor
from rentflow.domain.booking_state import TRANSITION_RULES
from rentflow.models.booking import DamageClaim, Inspection, RentalEvent
from rentflow.schemas.booking import BookingCreate, InspectionSubmit
from rentflow.schemas.transition import (
    CancelPayload,
    InitiateReturnPayload,
    ReportDamagePayload,
    ResolveDisputePayload,
)
from rentflow.services.conflict_service import conflict_service
from tests.conftest import ledger_entries


async def _events(db, booking_id):
    result = await db.execute(
        select(RentalEvent).where(RentalEvent.booking_id == booking_id).order_by(RentalEvent.created_at)
    )
    return list(result.scalars().all())


# ==================== REQUESTS ====================


async def test_request_snapshots_server_price(db, state_machine, renter, equipment, today):
    booking = await state_machine.create_request(
        db,
        renter,
        BookingCreate(
            equipment_id=equipment.id,
            start_date=today,
            end_date=today + timedelta(days=3),
            insurance_type="basic",
            client_total=Decimal("182.01"),
        ),
    )

    assert booking.status == "pending"
    assert booking.renter_id == renter.id
    assert booking.owner_id == equipment.owner_id
    assert booking.total_amount == Decimal("182.00")
    assert booking.insurance_cost == Decimal("6.00")
    assert booking.damage_deposit_amount == Decimal("50.00")


async def test_request_with_stale_client_total_is_rejected(db, state_machine, renter, equipment, today):
    with pytest.raises(PricingMismatch):
        await state_machine.create_request(
            db,
            renter,
            BookingCreate(
                equipment_id=equipment.id,
                start_date=today,
                end_date=today + timedelta(days=3),
                insurance_type="basic",
                client_total=Decimal("185.00"),
            ),
        )


async def test_owner_cannot_book_own_equipment(db, state_machine, owner, equipment, today):
    with pytest.raises(Forbidden):
        await state_machine.create_request(
            db,
            owner,
            BookingCreate(equipment_id=equipment.id, start_date=today, end_date=today + timedelta(days=1)),
        )


async def test_request_for_unavailable_equipment_is_rejected(db, state_machine, renter, equipment, today):
    equipment.is_available = False
    await db.commit()

    with pytest.raises(PreconditionNotMet, match="not available"):
        await state_machine.create_request(
            db,
            renter,
            BookingCreate(equipment_id=equipment.id, start_date=today, end_date=today + timedelta(days=1)),
        )


async def test_request_overlapping_confirmed_booking_is_rejected(db, lifecycle, state_machine, equipment, today):
    await lifecycle.advance("awaiting_pickup_inspection")

    with pytest.raises(DatesNotAvailable):
        await state_machine.create_request(
            db,
            Actor(id=uuid4()),
            BookingCreate(
                equipment_id=equipment.id,
                start_date=today + timedelta(days=1),
                end_date=today + timedelta(days=2),
            ),
        )


async def test_pending_requests_do_not_block_dates(db, lifecycle):
    first = await lifecycle.request()
    second = await lifecycle.request()

    assert first != second


async def test_confirmed_booking_occupies_start_up_to_end_day(db, lifecycle, equipment, today):
    await lifecycle.advance("awaiting_pickup_inspection")
    end = today + timedelta(days=3)

    async def free(start, stop):
        return await conflict_service.is_available(db, equipment.id, start, stop)

    assert await free(end, end + timedelta(days=2))
    assert await free(end, end)
    assert not await free(today, today)
    assert not await free(end - timedelta(days=1), end - timedelta(days=1))
    assert not await free(today - timedelta(days=1), today + timedelta(days=1))


async def test_same_day_booking_blocks_its_own_day(db, lifecycle, equipment, today):
    booking_id = await lifecycle.request(days=0)
    await lifecycle.pay(booking_id)

    assert not await conflict_service.is_available(db, equipment.id, today, today + timedelta(days=2))
    assert await conflict_service.is_available(db, equipment.id, today + timedelta(days=1), today + timedelta(days=2))


async def test_unknown_booking_raises_not_found(db, state_machine, renter):
    with pytest.raises(NotFoundError):
        await state_machine.start_rental(db, uuid4(), renter)


# ==================== AUTHORIZATION ====================


async def test_owner_cannot_complete_pickup_inspection(db, lifecycle, state_machine, owner):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")
    await lifecycle.inspect(booking_id, "pickup")

    with pytest.raises(Forbidden) as exc:
        await state_machine.complete_pickup_inspection(db, booking_id, owner)

    assert exc.value.required_role == "renter"
    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "awaiting_pickup_inspection"


async def test_renter_cannot_confirm_return(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("pending_owner_review")

    with pytest.raises(Forbidden) as exc:
        await state_machine.owner_confirm(db, booking_id, renter)

    assert exc.value.required_role == "owner"


async def test_stranger_cannot_cancel(db, lifecycle, state_machine):
    booking_id = await lifecycle.advance("pending")

    with pytest.raises(Forbidden):
        await state_machine.cancel(db, booking_id, Actor(id=uuid4()))


async def test_users_cannot_complete_payment(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("pending")

    with pytest.raises(Forbidden) as exc:
        await state_machine.complete_payment(db, booking_id, renter)

    assert exc.value.required_role == "system"


async def test_owner_cannot_resolve_dispute(db, lifecycle, state_machine, owner):
    booking_id = await lifecycle.advance("disputed")

    with pytest.raises(Forbidden):
        await state_machine.resolve_dispute(db, booking_id, owner, ResolveDisputePayload())


async def test_stranger_cannot_view_booking(db, lifecycle, state_machine, admin, renter):
    booking_id = await lifecycle.advance("pending")

    with pytest.raises(Forbidden):
        await state_machine.get_booking_for_actor(db, booking_id, Actor(id=uuid4()))
    assert (await state_machine.get_booking_for_actor(db, booking_id, admin)).id == booking_id
    assert (await state_machine.get_booking_for_actor(db, booking_id, renter)).id == booking_id


# ==================== PRECONDITIONS ====================


async def test_complete_payment_requires_succeeded_payment(db, lifecycle, state_machine):
    booking_id = await lifecycle.advance("pending")

    with pytest.raises(PreconditionNotMet, match="Payment not completed"):
        await state_machine.complete_payment(db, booking_id, SYSTEM_ACTOR)


async def test_pickup_requires_renter_inspection(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")

    with pytest.raises(PreconditionNotMet, match="Pickup inspection"):
        await state_machine.complete_pickup_inspection(db, booking_id, renter)


async def test_inspection_outside_its_window_is_rejected(db, lifecycle, state_machine, renter, owner):
    booking_id = await lifecycle.advance("pending")

    with pytest.raises(PreconditionNotMet):
        await lifecycle.inspect(booking_id, "pickup")
    with pytest.raises(Forbidden):
        await state_machine.record_inspection(
            db, booking_id, owner, InspectionSubmit(inspection_type="pickup")
        )


async def test_start_rental_waits_for_start_date(db, lifecycle, state_machine, renter, today):
    booking_id = await lifecycle.advance("awaiting_start_date", start=today + timedelta(days=5))

    with pytest.raises(PreconditionNotMet, match="not reached"):
        await state_machine.start_rental(db, booking_id, renter)

    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "awaiting_start_date"


async def test_return_inspection_required_before_review(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("awaiting_return_inspection")

    with pytest.raises(PreconditionNotMet, match="Return inspection"):
        await state_machine.complete_return_inspection(db, booking_id, renter)


async def test_blank_damage_report_files_nothing(db, lifecycle, state_machine, owner):
    booking_id = await lifecycle.advance("pending_owner_review")

    with pytest.raises(PreconditionNotMet, match="Damage description required"):
        await state_machine.owner_report_damage(
            db, booking_id, owner, ReportDamagePayload(description="   ")
        )

    claims = await db.execute(select(DamageClaim).where(DamageClaim.booking_id == booking_id))
    assert claims.scalars().all() == []
    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "pending_owner_review"


async def test_deduction_above_deposit_is_rejected(db, lifecycle, state_machine, admin):
    booking_id = await lifecycle.advance("disputed")

    with pytest.raises(PreconditionNotMet, match="exceeds held deposit"):
        await state_machine.resolve_dispute(
            db, booking_id, admin, ResolveDisputePayload(deduction_amount=Decimal("50.01"))
        )

    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "disputed"


# ==================== STATE GRAPH ====================


async def test_active_booking_cannot_be_cancelled(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("active")

    with pytest.raises(InvalidStateTransition) as exc:
        await state_machine.cancel(db, booking_id, renter)

    assert exc.value.current_status == "active"
    assert "pending" in exc.value.allowed_from


async def test_repeated_transition_reports_already_in_state(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("awaiting_return_inspection")

    with pytest.raises(AlreadyInState) as exc:
        await state_machine.initiate_return(db, booking_id, renter)

    assert exc.value.current_status == "awaiting_return_inspection"


async def test_skipping_a_stage_is_rejected(db, lifecycle, state_machine, owner):
    booking_id = await lifecycle.advance("active")

    with pytest.raises(InvalidStateTransition):
        await state_machine.owner_confirm(db, booking_id, owner)


async def test_losing_writer_sees_the_winners_state(session_maker, lifecycle, state_machine, owner):
    booking_id = await lifecycle.advance("pending")

    async with session_maker() as first, session_maker() as second:
        stale = await state_machine.get_booking(first, booking_id)
        assert stale.status == "pending"

        await state_machine.cancel(second, booking_id, owner)

        # first still believes the booking is pending
        with pytest.raises(InvalidStateTransition) as exc:
            await state_machine._write_status(first, stale, TRANSITION_RULES["complete_payment"])
        await first.rollback()

    assert exc.value.current_status == "cancelled"


async def test_losing_writer_of_same_transition_gets_already_in_state(
    session_maker, lifecycle, state_machine, renter
):
    booking_id = await lifecycle.advance("active")

    async with session_maker() as first, session_maker() as second:
        stale = await state_machine.get_booking(first, booking_id)
        await state_machine.initiate_return(second, booking_id, renter)

        with pytest.raises(AlreadyInState):
            await state_machine._write_status(first, stale, TRANSITION_RULES["initiate_return"])
        await first.rollback()


async def test_apply_dispatches_on_action(db, lifecycle, state_machine, renter):
    booking_id = await lifecycle.advance("active")

    response = await state_machine.apply(db, booking_id, renter, InitiateReturnPayload())

    assert response.previous_status == "active"
    assert response.status == "awaiting_return_inspection"


# ==================== LIFECYCLE ====================


async def test_payment_moves_booking_to_pickup(db, lifecycle, state_machine, notifier, owner):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")

    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "awaiting_pickup_inspection"
    assert "New Booking Confirmed" in notifier.titles_for(owner.id)


async def test_manual_start_is_recorded(db, lifecycle, state_machine, notifier, renter):
    booking_id = await lifecycle.advance("active")

    booking = await state_machine.get_booking(db, booking_id)
    assert booking.activated_at is not None
    events = await _events(db, booking_id)
    assert [(e.event_type, e.event_data) for e in events] == [
        ("rental_started", {"manual_activation": True})
    ]
    assert "Rental Started" not in notifier.titles_for(renter.id)


async def test_owner_confirm_completes_and_releases_escrow(
    db, lifecycle, state_machine, settlement, notifier, owner, renter
):
    booking_id = await lifecycle.advance("pending_owner_review")

    response = await state_machine.owner_confirm(db, booking_id, owner)

    assert response.status == "completed"
    booking = await state_machine.get_booking(db, booking_id)
    assert booking.completed_at is not None

    payment = await settlement.ledger.get_payment_for_booking(db, booking_id)
    assert payment.escrow_status == "released"
    assert payment.deposit_status == "released"
    assert payment.payout_status == "released"

    inspection = (
        await db.execute(
            select(Inspection)
            .where(Inspection.booking_id == booking_id, Inspection.inspection_type == "return")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert inspection.verified_by_owner is True

    assert ("deposit_status", "held", "released") in await ledger_entries(db, booking_id)
    assert "Rental Completed" in notifier.titles_for(renter.id)


async def test_damage_report_opens_claim(db, lifecycle, state_machine, notifier, owner, renter):
    booking_id = await lifecycle.advance("disputed")

    booking = await state_machine.get_booking(db, booking_id)
    assert booking.disputed_at is not None

    claim = (await db.execute(select(DamageClaim).where(DamageClaim.booking_id == booking_id))).scalar_one()
    assert claim.status == "pending"
    assert claim.filed_by == owner.id
    assert claim.estimated_cost == Decimal("30.00")

    critical = [n for n in notifier.sent if n["user_id"] == renter.id and n["priority"] == "critical"]
    assert [n["title"] for n in critical] == ["Damage Claim Filed"]


async def test_resolve_with_deduction_claims_deposit(db, lifecycle, state_machine, settlement, admin):
    booking_id = await lifecycle.advance("disputed")

    response = await state_machine.resolve_dispute(
        db,
        booking_id,
        admin,
        ResolveDisputePayload(deduction_amount=Decimal("20.00"), resolution={"note": "Hood replaced"}),
    )

    assert response.previous_status == "disputed"
    assert response.status == "completed"

    payment = await settlement.ledger.get_payment_for_booking(db, booking_id)
    assert payment.escrow_status == "released"
    assert payment.deposit_status == "claimed"

    claim = (await db.execute(select(DamageClaim).where(DamageClaim.booking_id == booking_id))).scalar_one()
    assert claim.status == "resolved"
    assert claim.resolution == {"note": "Hood replaced", "deduction_amount": "20.00"}


async def test_resolve_without_deduction_releases_deposit(db, lifecycle, state_machine, settlement):
    booking_id = await lifecycle.advance("disputed")

    await state_machine.resolve_dispute(db, booking_id, SYSTEM_ACTOR, ResolveDisputePayload())

    payment = await settlement.ledger.get_payment_for_booking(db, booking_id)
    assert payment.deposit_status == "released"


async def test_cancel_pending_booking(db, lifecycle, state_machine, notifier, renter, owner):
    booking_id = await lifecycle.advance("pending")

    response = await state_machine.cancel(db, booking_id, renter, CancelPayload())

    assert response.status == "cancelled"
    booking = await state_machine.get_booking(db, booking_id)
    assert booking.cancellation_reason == "Booking cancelled"
    assert booking.cancelled_at is not None
    assert "Booking Cancelled" in notifier.titles_for(owner.id)


async def test_cancel_after_payment_refunds_in_full(
    db, lifecycle, state_machine, settlement, gateway, owner
):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")

    await state_machine.cancel(db, booking_id, owner, CancelPayload(reason="Camera sold"))

    payment = await settlement.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "refunded"
    assert payment.escrow_status == "refunded"
    assert payment.deposit_status == "refunded"
    assert payment.refund_amount == Decimal("182.00")
    assert gateway.refunds == [
        {"intent_id": payment.external_payment_intent_id, "amount": 18200, "reason": "Camera sold"}
    ]


async def test_failed_refund_keeps_cancellation(db, lifecycle, state_machine, settlement, gateway, renter):
    booking_id = await lifecycle.advance("awaiting_start_date")
    gateway.fail_refunds = True

    response = await state_machine.cancel(db, booking_id, renter)

    assert response.status == "cancelled"
    booking = await state_machine.get_booking(db, booking_id)
    assert booking.status == "cancelled"
    payment = await settlement.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "succeeded"
    assert payment.escrow_status == "held"
