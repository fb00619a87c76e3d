"""Payment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from rentflow.api.deps import CurrentActor, CurrentAdmin, DbSession
from rentflow.core.middleware import payment_intent_limiter
from rentflow.models.payment import Payment
from rentflow.schemas.payment import (
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentRefundRequest,
    PaymentResponse,
    SettlementResult,
)
from rentflow.services.payment_orchestrator import payment_orchestrator

router = APIRouter()


@router.post(
    "/intent",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(payment_intent_limiter)],
)
async def create_payment_intent(
    payment_data: PaymentIntentCreate,
    actor: CurrentActor,
    db: DbSession,
) -> PaymentIntentResponse:
    """Create a payment intent for a pending booking, or return the open one."""
    return await payment_orchestrator.create_or_reuse_intent(
        db,
        payment_data.booking_request_id,
        actor,
        client_total=payment_data.client_total,
    )


@router.post("/{booking_id}/release-escrow", response_model=PaymentResponse)
async def release_escrow(
    booking_id: UUID,
    actor: CurrentActor,
    db: DbSession,
) -> Payment:
    """Release held escrow to the owner (owner after the grace period, or admin)."""
    return await payment_orchestrator.release_escrow(db, booking_id, actor)


@router.post("/{booking_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    booking_id: UUID,
    refund_data: PaymentRefundRequest,
    admin: CurrentAdmin,
    db: DbSession,
) -> Payment:
    """Refund a succeeded payment in full (admin only)."""
    return await payment_orchestrator.refund_payment(db, booking_id, admin, refund_data.reason)


@router.post("/{booking_id}/confirm-manual", response_model=SettlementResult)
async def confirm_manual_payment(
    booking_id: UUID,
    admin: CurrentAdmin,
    db: DbSession,
) -> SettlementResult:
    """Confirm an offline payment received through the manual gateway (admin only)."""
    return await payment_orchestrator.confirm_manual_payment(db, booking_id, admin)
