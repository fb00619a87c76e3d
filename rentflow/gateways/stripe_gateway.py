"""Stripe payment gateway adapter.

The Stripe SDK is synchronous, so every API call runs in a worker thread
bounded by ``settings.stripe_timeout_seconds``.
"""

import asyncio
import logging
from typing import Any, Callable

import stripe

from rentflow.config import settings
from rentflow.gateways.base import (
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
)

logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    """Stripe payment gateway implementation."""

    def __init__(self):
        self.secret_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        stripe.api_key = self.secret_key
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=settings.stripe_timeout_seconds,
        )

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    async def create_payment(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
    ) -> PaymentResult:
        """Create Stripe PaymentIntent."""
        if not self.secret_key:
            return PaymentResult(
                success=False,
                error_message="Stripe not configured",
            )

        # A replacement intent must not replay the one it replaces
        attempt = (metadata or {}).get("replaces_intent") or "first"

        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency.lower(),
                description=description,
                metadata={"reference_id": reference_id, **(metadata or {})},
                idempotency_key=f"intent-{reference_id}-{amount}-{attempt}",
            )

            return PaymentResult(
                success=True,
                transaction_id=intent.id,
                client_secret=intent.client_secret,
                status=intent.status,
                raw_response={"id": intent.id, "status": intent.status},
            )

        except (stripe.StripeError, TimeoutError) as e:
            logger.error(f"Stripe create intent failed for {reference_id}: {e}")
            return PaymentResult(
                success=False,
                error_message=str(e) or "Stripe request timed out",
            )

    async def retrieve_payment(
        self,
        transaction_id: str,
    ) -> PaymentResult:
        """Retrieve Stripe PaymentIntent."""
        if not self.secret_key:
            return PaymentResult(
                success=False,
                error_message="Stripe not configured",
            )

        try:
            intent = await self._call(stripe.PaymentIntent.retrieve, transaction_id)

            return PaymentResult(
                success=True,
                transaction_id=transaction_id,
                client_secret=intent.client_secret,
                status=intent.status,
                raw_response={"status": intent.status},
            )

        except (stripe.StripeError, TimeoutError) as e:
            logger.warning(f"Stripe retrieve intent {transaction_id} failed: {e}")
            return PaymentResult(
                success=False,
                transaction_id=transaction_id,
                error_message=str(e) or "Stripe request timed out",
            )

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process Stripe refund."""
        if not self.secret_key:
            return RefundResult(
                success=False,
                error_message="Stripe not configured",
            )

        try:
            refund = await self._call(
                stripe.Refund.create,
                payment_intent=transaction_id,
                amount=amount,
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
                idempotency_key=f"refund-{transaction_id}",
            )

            return RefundResult(
                success=refund.status in ("succeeded", "pending"),
                refund_id=refund.id,
                raw_response={"status": refund.status, "id": refund.id},
            )

        except (stripe.StripeError, TimeoutError) as e:
            logger.error(f"Stripe refund for {transaction_id} failed: {e}")
            return RefundResult(
                success=False,
                error_message=str(e) or "Stripe request timed out",
            )

    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict | None:
        """Verify Stripe webhook signature."""
        if not self.webhook_secret:
            return None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
            )
            return event

        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected Stripe webhook: {e}")
            return None
