"""Booking transition request schemas.

One payload model per transition, tagged by ``action``. Malformed payloads are
rejected at the API boundary before any transition logic runs.
"""

from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class _TransitionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CompletePaymentPayload(_TransitionPayload):
    action: Literal["complete_payment"] = "complete_payment"


class CompletePickupInspectionPayload(_TransitionPayload):
    action: Literal["complete_pickup_inspection"] = "complete_pickup_inspection"


class StartRentalPayload(_TransitionPayload):
    action: Literal["start_rental"] = "start_rental"


class InitiateReturnPayload(_TransitionPayload):
    action: Literal["initiate_return"] = "initiate_return"


class CompleteReturnInspectionPayload(_TransitionPayload):
    action: Literal["complete_return_inspection"] = "complete_return_inspection"


class OwnerConfirmPayload(_TransitionPayload):
    action: Literal["owner_confirm"] = "owner_confirm"


class ReportDamagePayload(_TransitionPayload):
    """Damage report filed by the owner at review time."""

    action: Literal["owner_report_damage"] = "owner_report_damage"
    # blank descriptions are rejected by the state machine, not here
    description: str = Field(default="", max_length=5000)
    estimated_cost: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)


class ResolveDisputePayload(_TransitionPayload):
    """Admin decision on a disputed rental."""

    action: Literal["resolve_dispute"] = "resolve_dispute"
    deduction_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    resolution: dict[str, Any] = Field(default_factory=dict)


class CancelPayload(_TransitionPayload):
    action: Literal["cancel"] = "cancel"
    reason: str | None = Field(default=None, max_length=2000)


TransitionPayload = Annotated[
    Union[
        CompletePaymentPayload,
        CompletePickupInspectionPayload,
        StartRentalPayload,
        InitiateReturnPayload,
        CompleteReturnInspectionPayload,
        OwnerConfirmPayload,
        ReportDamagePayload,
        ResolveDisputePayload,
        CancelPayload,
    ],
    Field(discriminator="action"),
]


class TransitionResponse(BaseModel):
    """Result of an applied transition."""

    booking_id: UUID
    status: str
    previous_status: str

