"""Booking-related database models."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from rentflow.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


class Equipment(Base):
    """Rentable equipment. Read model for pricing and ownership."""

    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # Pricing
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    damage_deposit_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    damage_deposit_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))

    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class BookingRequest(Base):
    """One rental attempt. Status is owned by the booking state machine."""

    __tablename__ = "booking_requests"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="booking_requests_date_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("equipment.id"), nullable=False, index=True
    )
    renter_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)

    # Dates
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(40), default="pending", nullable=False, index=True
    )  # see rentflow.domain.booking_state
    status_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Quote snapshot
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    insurance_type: Mapped[str] = mapped_column(String(20), default="none")  # none, basic, premium
    insurance_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    damage_deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))

    # Cancellation
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    equipment: Mapped["Equipment"] = relationship("Equipment", lazy="joined")


class Inspection(Base):
    """Pickup or return inspection of the equipment."""

    __tablename__ = "equipment_inspections"
    __table_args__ = (
        UniqueConstraint("booking_id", "inspection_type", name="uq_inspection_booking_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("booking_requests.id"), nullable=False, index=True
    )
    inspection_type: Mapped[str] = mapped_column(String(10), nullable=False)  # pickup, return
    verified_by_renter: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_by_owner: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class DamageClaim(Base):
    """Owner's damage claim against a returned rental."""

    __tablename__ = "damage_claims"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("booking_requests.id"), nullable=False, index=True
    )
    filed_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    damage_description: Mapped[str] = mapped_column(Text, nullable=False)
    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending, accepted, disputed, resolved, escalated
    resolution: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RentalEvent(Base):
    """Append-only rental lifecycle log."""

    __tablename__ = "rental_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("booking_requests.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    event_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
