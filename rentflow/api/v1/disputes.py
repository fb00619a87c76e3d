"""Damage dispute endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from rentflow.api.deps import CurrentAdmin, DbSession
from rentflow.models.booking import DamageClaim
from rentflow.schemas.transition import ResolveDisputePayload, TransitionResponse
from rentflow.services.booking_state_machine import booking_state_machine
from rentflow.services.dispute_service import dispute_service

router = APIRouter()


# ============ SCHEMAS ============


class DisputeResolve(BaseModel):
    """Schema for resolving a damage dispute."""

    deduction_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    resolution: dict[str, Any] = Field(default_factory=dict)


class DamageClaimResponse(BaseModel):
    """Schema for damage claim response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    filed_by: UUID
    damage_description: str
    estimated_cost: Decimal
    status: str
    resolution: dict[str, Any] | None
    resolved_at: datetime | None
    created_at: datetime | None = None


# ============ ENDPOINTS ============


@router.get("/{booking_id}/claims", response_model=list[DamageClaimResponse])
async def list_claims(
    booking_id: UUID,
    admin: CurrentAdmin,
    db: DbSession,
) -> list[DamageClaim]:
    """List damage claims filed against a booking (admin only)."""
    await booking_state_machine.get_booking(db, booking_id)
    return await dispute_service.list_claims(db, booking_id)


@router.post("/{booking_id}/resolve", response_model=TransitionResponse)
async def resolve_dispute(
    booking_id: UUID,
    resolve_data: DisputeResolve,
    admin: CurrentAdmin,
    db: DbSession,
) -> TransitionResponse:
    """Resolve a disputed rental and settle escrow (admin only)."""
    payload = ResolveDisputePayload(
        deduction_amount=resolve_data.deduction_amount,
        resolution=resolve_data.resolution,
    )
    return await booking_state_machine.resolve_dispute(db, booking_id, admin, payload)
