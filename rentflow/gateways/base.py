"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

# Provider intent statuses after which an intent can no longer be paid.
FINAL_INTENT_STATUSES = frozenset({"canceled", "succeeded"})


class GatewayType(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"
    MANUAL = "manual"


@dataclass
class PaymentResult:
    """Result of a payment operation."""

    success: bool
    transaction_id: str | None = None
    client_secret: str | None = None
    status: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


@dataclass
class RefundResult:
    """Result of a refund operation."""

    success: bool
    refund_id: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""

    @abstractmethod
    async def create_payment(
        self,
        amount: int,
        currency: str,
        reference_id: str,
        description: str,
        metadata: dict | None = None,
    ) -> PaymentResult:
        """Create a payment intent.

        Args:
            amount: Amount in cents
            currency: Currency code (usd)
            reference_id: Internal reference (booking_request_id)
            description: Payment description
            metadata: Additional metadata

        Returns:
            PaymentResult with intent id and client secret
        """

    @abstractmethod
    async def retrieve_payment(
        self,
        transaction_id: str,
    ) -> PaymentResult:
        """Fetch an existing intent and its current provider status.

        Args:
            transaction_id: Gateway intent ID

        Returns:
            PaymentResult with current status and client secret
        """

    @abstractmethod
    async def process_refund(
        self,
        transaction_id: str,
        amount: int,
        reason: str,
    ) -> RefundResult:
        """Process a refund.

        Args:
            transaction_id: Original payment intent ID
            amount: Refund amount in cents
            reason: Refund reason

        Returns:
            RefundResult with refund details
        """

    @abstractmethod
    def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> dict | None:
        """Verify webhook signature and parse payload.

        Args:
            payload: Raw request body
            signature: Webhook signature header

        Returns:
            Parsed event dict if valid, None if invalid
        """
