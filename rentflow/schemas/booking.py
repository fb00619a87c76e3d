"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rentflow.domain.pricing import InsuranceType


class BookingCreate(BaseModel):
    """Schema for requesting a rental."""

    equipment_id: UUID
    start_date: date
    end_date: date
    insurance_type: InsuranceType = InsuranceType.NONE
    client_total: Decimal | None = Field(default=None, ge=0)

    @field_validator("end_date")
    @classmethod
    def validate_end_date(cls, v: date, info) -> date:
        start_date = info.data.get("start_date")
        if start_date and v < start_date:
            raise ValueError("end_date must be on or after start_date")
        return v


class PriceBreakdownResponse(BaseModel):
    """Schema for rental price breakdown."""

    daily_rate: Decimal
    days: int
    rental_amount: Decimal
    service_fee: Decimal
    insurance_type: str
    insurance_amount: Decimal
    deposit_amount: Decimal
    tax: Decimal
    total: Decimal


class InspectionSubmit(BaseModel):
    """Renter's inspection submission."""

    inspection_type: str = Field(..., pattern="^(pickup|return)$")
    notes: str | None = Field(None, max_length=5000)


class InspectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    inspection_type: str
    verified_by_renter: bool
    verified_by_owner: bool
    notes: str | None


class BookingResponse(BaseModel):
    """Schema for booking response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    equipment_id: UUID
    renter_id: UUID
    owner_id: UUID
    start_date: date
    end_date: date
    status: str
    total_amount: Decimal
    insurance_type: str
    insurance_cost: Decimal
    damage_deposit_amount: Decimal
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    activated_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
