from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from rentflow.core.exceptions import (
    AlreadyInState,
    AlreadyPaid,
    Forbidden,
    InvalidStateTransition,
    PreconditionNotMet,
    PricingMismatch,
)
from rentflow.core.permissions import SYSTEM_ACTOR, Actor
from rentflow.models.booking import RentalEvent
from rentflow.services.payment_orchestrator import (
    DUPLICATE,
    FAILED,
    IGNORED,
    REFUND_PENDING,
    REFUNDED_AFTER_CANCEL,
    SETTLED,
)
from tests.conftest import BrokenSettlement, ledger_entries


# ==================== INTENTS ====================


async def test_intent_charges_server_total(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()

    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter, Decimal("182.01"))

    assert intent.reused is False
    assert intent.total_amount == Decimal("182.00")
    assert intent.deposit_amount == Decimal("50.00")
    assert intent.client_secret == f"{intent.payment_intent_id}_secret"
    assert gateway.created == [
        {"intent_id": intent.payment_intent_id, "amount": 18200, "reference_id": str(booking_id)}
    ]


async def test_open_intent_is_reused(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()

    first = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    second = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    assert second.reused is True
    assert second.payment_intent_id == first.payment_intent_id
    assert second.payment_id == first.payment_id
    assert len(gateway.created) == 1


async def test_cancelled_intent_is_replaced(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()
    first = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    gateway.intents[first.payment_intent_id] = "canceled"

    second = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    assert second.reused is False
    assert second.payment_intent_id != first.payment_intent_id
    assert second.payment_id == first.payment_id
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    assert payment.external_payment_intent_id == second.payment_intent_id


async def test_charged_intent_is_settled_instead_of_replaced(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()
    first = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    gateway.intents[first.payment_intent_id] = "succeeded"

    with pytest.raises(AlreadyPaid):
        await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    assert len(gateway.created) == 1
    booking = await orchestrator.state_machine.get_booking(db, booking_id)
    assert booking.status == "awaiting_pickup_inspection"

    late = await orchestrator.on_settlement_confirmed(db, first.payment_intent_id, "succeeded")
    assert late.outcome == DUPLICATE


async def test_pricing_mismatch_creates_no_intent(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()

    with pytest.raises(PricingMismatch):
        await orchestrator.create_or_reuse_intent(db, booking_id, renter, Decimal("185.00"))

    assert gateway.created == []
    assert await orchestrator.ledger.get_payment_for_booking(db, booking_id) is None


async def test_only_renter_can_pay(db, lifecycle, orchestrator, owner):
    booking_id = await lifecycle.request()

    with pytest.raises(Forbidden):
        await orchestrator.create_or_reuse_intent(db, booking_id, owner)
    with pytest.raises(Forbidden):
        await orchestrator.create_or_reuse_intent(db, booking_id, Actor(id=uuid4()))


async def test_intent_requires_pending_booking(db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")

    with pytest.raises(InvalidStateTransition):
        await orchestrator.create_or_reuse_intent(db, booking_id, renter)


async def test_succeeded_payment_blocks_new_intent(db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.request()
    await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    await orchestrator.ledger.mark_succeeded(db, payment)
    await db.commit()

    with pytest.raises(AlreadyPaid):
        await orchestrator.create_or_reuse_intent(db, booking_id, renter)


async def test_unavailable_equipment_blocks_intent(db, lifecycle, orchestrator, equipment, renter):
    booking_id = await lifecycle.request()
    equipment.is_available = False
    await db.commit()

    with pytest.raises(PreconditionNotMet):
        await orchestrator.create_or_reuse_intent(db, booking_id, renter)


# ==================== SETTLEMENT ====================


async def test_settlement_completes_payment_once(db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    first = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")
    second = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")

    assert first.outcome == SETTLED
    assert first.booking_status == "awaiting_pickup_inspection"
    assert second.outcome == DUPLICATE
    assert second.booking_status == "awaiting_pickup_inspection"
    assert await ledger_entries(db, booking_id) == [("payment_status", "pending", "succeeded")]


async def test_duplicate_delivery_from_another_session(session_maker, db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    async with session_maker() as first, session_maker() as second:
        results = [
            await orchestrator.on_settlement_confirmed(first, intent.payment_intent_id, "succeeded"),
            await orchestrator.on_settlement_confirmed(second, intent.payment_intent_id, "succeeded"),
        ]

    assert sorted(r.outcome for r in results) == [DUPLICATE, SETTLED]


async def test_complete_payment_after_settlement_is_already_applied(db, lifecycle, orchestrator):
    booking_id = await lifecycle.advance("awaiting_pickup_inspection")

    with pytest.raises(AlreadyInState):
        await orchestrator.state_machine.complete_payment(db, booking_id, SYSTEM_ACTOR)


async def test_failed_intent_is_recorded_and_retryable(db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.request()
    first = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    failed = await orchestrator.on_settlement_confirmed(db, first.payment_intent_id, "failed")
    repeated = await orchestrator.on_settlement_confirmed(db, first.payment_intent_id, "failed")

    assert failed.outcome == FAILED
    assert repeated.outcome == DUPLICATE
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "failed"

    retry = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    settled = await orchestrator.on_settlement_confirmed(db, retry.payment_intent_id, "succeeded")

    assert retry.payment_intent_id != first.payment_intent_id
    assert settled.outcome == SETTLED


async def test_unknown_intent_is_ignored(db, orchestrator):
    result = await orchestrator.on_settlement_confirmed(db, "pi_unknown", "succeeded")

    assert result.outcome == IGNORED


async def test_non_final_status_is_ignored(db, lifecycle, orchestrator, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    result = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "processing")

    assert result.outcome == IGNORED
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "pending"


async def test_settlement_after_cancel_is_refunded(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    await orchestrator.state_machine.cancel(db, booking_id, renter)

    result = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")

    assert result.outcome == REFUNDED_AFTER_CANCEL
    assert result.booking_status == "cancelled"
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "refunded"
    assert payment.refund_reason == "Settlement received after cancellation"
    assert len(gateway.refunds) == 1

    events = await db.execute(
        select(RentalEvent.event_type).where(RentalEvent.booking_id == booking_id)
    )
    assert "settlement_after_cancel" in events.scalars().all()


async def test_redelivery_after_cancel_refund_is_a_duplicate(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    await orchestrator.state_machine.cancel(db, booking_id, renter)
    await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")

    again = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")

    assert again.outcome == DUPLICATE
    assert again.booking_status == "cancelled"
    assert len(gateway.refunds) == 1


async def test_refund_after_cancel_waits_for_provider(db, lifecycle, orchestrator, gateway, renter):
    booking_id = await lifecycle.request()
    intent = await orchestrator.create_or_reuse_intent(db, booking_id, renter)
    await orchestrator.state_machine.cancel(db, booking_id, renter)
    gateway.fail_refunds = True

    result = await orchestrator.on_settlement_confirmed(db, intent.payment_intent_id, "succeeded")

    assert result.outcome == REFUND_PENDING
    payment = await orchestrator.ledger.get_payment_for_booking(db, booking_id)
    assert payment.payment_status == "succeeded"
    assert payment.escrow_status == "held"


# ==================== ADMIN OPERATIONS ====================


async def test_manual_confirmation_settles(db, lifecycle, orchestrator, renter, admin):
    booking_id = await lifecycle.request()
    await orchestrator.create_or_reuse_intent(db, booking_id, renter)

    with pytest.raises(Forbidden):
        await orchestrator.confirm_manual_payment(db, booking_id, renter)
    result = await orchestrator.confirm_manual_payment(db, booking_id, admin)

    assert result.outcome == SETTLED


async def test_manual_confirmation_needs_intent(db, lifecycle, orchestrator, admin):
    booking_id = await lifecycle.request()

    with pytest.raises(PreconditionNotMet):
        await orchestrator.confirm_manual_payment(db, booking_id, admin)


async def test_admin_refund_leaves_booking_status(db, lifecycle, orchestrator, admin, renter):
    booking_id = await lifecycle.advance("awaiting_start_date")

    with pytest.raises(Forbidden):
        await orchestrator.refund_payment(db, booking_id, renter, "Goodwill")
    payment = await orchestrator.refund_payment(db, booking_id, admin, "Goodwill")

    assert payment.payment_status == "refunded"
    assert payment.refund_reason == "Goodwill"
    booking = await orchestrator.state_machine.get_booking(db, booking_id)
    assert booking.status == "awaiting_start_date"


async def test_owner_release_waits_for_grace_period(
    db, lifecycle, orchestrator, owner, admin, monkeypatch
):
    booking_id = await lifecycle.advance("pending_owner_review")
    monkeypatch.setattr(orchestrator.state_machine, "settlement", BrokenSettlement())
    await orchestrator.state_machine.owner_confirm(db, booking_id, owner)

    with pytest.raises(PreconditionNotMet, match="Escrow can be released after"):
        await orchestrator.release_escrow(db, booking_id, owner)

    payment = await orchestrator.release_escrow(db, booking_id, admin)
    assert payment.escrow_status == "released"
    assert payment.deposit_status == "released"

    with pytest.raises(AlreadyInState):
        await orchestrator.release_escrow(db, booking_id, admin)


async def test_release_requires_completed_booking(db, lifecycle, orchestrator, owner, renter):
    booking_id = await lifecycle.advance("active")

    with pytest.raises(Forbidden):
        await orchestrator.release_escrow(db, booking_id, renter)
    with pytest.raises(PreconditionNotMet, match="completed bookings"):
        await orchestrator.release_escrow(db, booking_id, owner)
