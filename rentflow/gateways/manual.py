"""Manual payment gateway adapter.

No provider is called. Payments are settled by an admin through the manual
confirmation endpoint, which feeds the same settlement path as a webhook.
"""

from rentflow.gateways.base import (
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
)


class ManualGateway(PaymentGateway):
    """Manual payment gateway for offline payments."""

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def create_payment(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
    ) -> PaymentResult:
        """Create manual payment request (always succeeds)."""
        return PaymentResult(
            success=True,
            transaction_id=f"manual_{reference_id}_{amount}",
            status="requires_confirmation",
            raw_response={
                "type": "offline",
                "status": "pending_verification",
                "amount": amount,
                "currency": currency,
            },
        )

    async def retrieve_payment(
        self,
        transaction_id: str,
    ) -> PaymentResult:
        """Manual intents stay open until an admin confirms them."""
        return PaymentResult(
            success=True,
            transaction_id=transaction_id,
            status="requires_confirmation",
        )

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process manual refund (requires admin action)."""
        return RefundResult(
            success=True,
            refund_id=f"refund_{transaction_id}",
            raw_response={
                "type": "manual_refund",
                "status": "pending",
                "note": "Admin must return the funds offline",
                "amount": amount,
                "reason": reason,
            },
        )

    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict | None:
        """Manual gateway doesn't have webhooks."""
        return None
