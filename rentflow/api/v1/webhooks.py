"""Webhook endpoints for payment gateways."""

import logging

from fastapi import APIRouter, Header, HTTPException, Request, status

from rentflow.api.deps import DbSession
from rentflow.config import settings
from rentflow.schemas.payment import SettlementResult
from rentflow.services.gateway_service import gateway_service
from rentflow.services.payment_orchestrator import payment_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

# Stripe event type → settlement status
STRIPE_EVENT_STATUSES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "canceled",
}


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    db: DbSession,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
) -> dict:
    """Handle Stripe webhook events."""
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhook secret is not configured",
        )

    # Raw body is required for signature verification
    payload = await request.body()
    event = gateway_service.verify_webhook(payload, stripe_signature or "", gateway_type="stripe")
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    event_type = event["type"]
    settlement_status = STRIPE_EVENT_STATUSES.get(event_type)
    if settlement_status is None:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return {"received": True}

    intent_id = event["data"]["object"]["id"]
    result: SettlementResult = await payment_orchestrator.on_settlement_confirmed(
        db, intent_id, settlement_status
    )
    return {"received": True, "outcome": result.outcome}
