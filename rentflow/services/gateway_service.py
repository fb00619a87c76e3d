"""Payment gateway service.

Routes payment operations to the configured gateway adapter and turns provider
failures into ``PaymentProviderError``. No business logic here - only gateway
coordination.
"""

import logging

from rentflow.config import settings
from rentflow.core.exceptions import PaymentProviderError
from rentflow.gateways.base import (
    GatewayType,
    PaymentGateway,
    PaymentResult,
    RefundResult,
)
from rentflow.gateways.manual import ManualGateway
from rentflow.gateways.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _assert_production_for_real_gateway(gateway_type: GatewayType) -> None:
    """Block real gateway operations outside production unless test mode is on.

    Raises:
        RuntimeError: If attempting real gateway operation outside production
    """
    if gateway_type == GatewayType.STRIPE and settings.environment != "production":
        if not settings.stripe_test_mode:
            raise RuntimeError(
                f"Cannot execute real {gateway_type.value} gateway operations "
                f"in {settings.environment} environment. Set ENVIRONMENT=production "
                "or STRIPE_TEST_MODE=true."
            )


class GatewayService:
    """Service for managing payment gateway operations."""

    def __init__(self, gateway: PaymentGateway | None = None):
        self._gateways: dict[GatewayType, PaymentGateway] = {}
        self._override = gateway

    def _get_gateway(self, gateway_type: str | GatewayType | None = None) -> PaymentGateway:
        """Get or create gateway instance."""
        if self._override is not None:
            return self._override

        gateway_type = gateway_type or settings.payment_gateway
        if isinstance(gateway_type, str):
            try:
                gateway_type = GatewayType(gateway_type)
            except ValueError:
                gateway_type = GatewayType.MANUAL

        if gateway_type not in self._gateways:
            if gateway_type == GatewayType.STRIPE:
                self._gateways[gateway_type] = StripeGateway()
            else:
                self._gateways[gateway_type] = ManualGateway()

        return self._gateways[gateway_type]

    @property
    def default_gateway_type(self) -> str:
        return self._get_gateway().gateway_type.value

    async def create_payment(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
        gateway_type: str | GatewayType | None = None,
    ) -> PaymentResult:
        """Create payment intent. Raises PaymentProviderError on failure."""
        gateway = self._get_gateway(gateway_type)
        _assert_production_for_real_gateway(gateway.gateway_type)
        result = await gateway.create_payment(
            amount=amount,
            currency=currency,
            reference_id=reference_id,
            description=description,
            metadata=metadata,
        )
        if not result.success:
            logger.error(f"Intent creation failed for {reference_id}: {result.error_message}")
            raise PaymentProviderError()
        return result

    async def retrieve_payment(
        self,
        transaction_id: str,
        gateway_type: str | GatewayType | None = None,
    ) -> PaymentResult:
        """Fetch intent status. Failures come back as an unsuccessful result."""
        gateway = self._get_gateway(gateway_type)
        return await gateway.retrieve_payment(transaction_id)

    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
        gateway_type: str | GatewayType | None = None,
    ) -> RefundResult:
        """Process refund. Raises PaymentProviderError on failure."""
        gateway = self._get_gateway(gateway_type)
        _assert_production_for_real_gateway(gateway.gateway_type)
        result = await gateway.process_refund(
            transaction_id=transaction_id,
            amount=amount,
            reason=reason,
        )
        if not result.success:
            logger.error(f"Refund failed for {transaction_id}: {result.error_message}")
            raise PaymentProviderError()
        return result

    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
        gateway_type: str | GatewayType | None = None,
    ) -> dict | None:
        """Verify webhook from gateway."""
        gateway = self._get_gateway(gateway_type)
        return gateway.verify_webhook(payload, signature)


# Singleton instance
gateway_service = GatewayService()
