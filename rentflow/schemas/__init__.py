"""Pydantic schemas for API validation."""

from rentflow.schemas.booking import (
    BookingCreate,
    BookingResponse,
    InspectionResponse,
    InspectionSubmit,
    PriceBreakdownResponse,
)
from rentflow.schemas.payment import (
    PaymentIntentCreate,
    PaymentIntentResponse,
    PaymentRefundRequest,
    PaymentResponse,
    SettlementResult,
)
from rentflow.schemas.transition import (
    CancelPayload,
    ReportDamagePayload,
    ResolveDisputePayload,
    TransitionPayload,
    TransitionResponse,
)

__all__ = [
    # Booking
    "BookingCreate",
    "BookingResponse",
    "InspectionSubmit",
    "InspectionResponse",
    "PriceBreakdownResponse",
    # Payment
    "PaymentIntentCreate",
    "PaymentIntentResponse",
    "PaymentRefundRequest",
    "PaymentResponse",
    "SettlementResult",
    # Transitions
    "TransitionPayload",
    "TransitionResponse",
    "ReportDamagePayload",
    "ResolveDisputePayload",
    "CancelPayload",
]
