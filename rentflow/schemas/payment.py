"""Payment-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentCreate(BaseModel):
    """Schema for requesting a payment intent."""

    booking_request_id: UUID
    client_total: Decimal | None = Field(default=None, ge=0)


class PaymentIntentResponse(BaseModel):
    """Client-usable payment authorization handle."""

    payment_id: UUID
    payment_intent_id: str
    client_secret: str | None
    reused: bool
    currency: str
    rental_amount: Decimal
    service_fee: Decimal
    insurance_amount: Decimal
    deposit_amount: Decimal
    total_amount: Decimal


class PaymentRefundRequest(BaseModel):
    """Schema for an admin refund."""

    reason: str = Field(..., min_length=3, max_length=500)


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_request_id: UUID
    renter_id: UUID
    owner_id: UUID
    subtotal: Decimal
    service_fee: Decimal
    insurance_amount: Decimal
    deposit_amount: Decimal
    total_amount: Decimal
    currency: str
    payment_status: str
    escrow_status: str
    deposit_status: str | None
    payout_status: str
    external_payment_intent_id: str | None
    refund_amount: Decimal | None
    refund_reason: str | None
    paid_at: datetime | None
    escrow_released_at: datetime | None
    created_at: datetime | None = None


class SettlementResult(BaseModel):
    """Outcome of a settlement callback."""

    intent_id: str
    outcome: str  # settled, duplicate, refunded_after_cancel, failed, ignored
    booking_status: str | None = None
