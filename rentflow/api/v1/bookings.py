"""Booking endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from rentflow.api.deps import CurrentActor, DbSession
from rentflow.core.middleware import transition_limiter
from rentflow.models.booking import BookingRequest, Inspection
from rentflow.schemas.booking import (
    BookingCreate,
    BookingResponse,
    InspectionResponse,
    InspectionSubmit,
)
from rentflow.schemas.transition import TransitionPayload, TransitionResponse
from rentflow.services.booking_state_machine import booking_state_machine

router = APIRouter()


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: CurrentActor,
    db: DbSession,
) -> BookingRequest:
    """Request a rental. The caller becomes the renter."""
    return await booking_state_machine.create_request(db, actor, booking_data)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: CurrentActor,
    db: DbSession,
) -> BookingRequest:
    """Get booking details. Renter, owner or admin only."""
    return await booking_state_machine.get_booking_for_actor(db, booking_id, actor)


@router.post(
    "/{booking_id}/transitions",
    response_model=TransitionResponse,
    dependencies=[Depends(transition_limiter)],
)
async def transition_booking(
    booking_id: UUID,
    payload: TransitionPayload,
    actor: CurrentActor,
    db: DbSession,
) -> TransitionResponse:
    """Apply a lifecycle transition, selected by the payload's ``action``."""
    return await booking_state_machine.apply(db, booking_id, actor, payload)


@router.post(
    "/{booking_id}/inspections",
    response_model=InspectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_inspection(
    booking_id: UUID,
    inspection_data: InspectionSubmit,
    actor: CurrentActor,
    db: DbSession,
) -> Inspection:
    """Record the renter's pickup or return inspection."""
    return await booking_state_machine.record_inspection(db, booking_id, actor, inspection_data)
