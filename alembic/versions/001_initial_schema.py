"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates all tables for the rental booking core:
- Equipment (read model)
- Booking requests, inspections, damage claims
- Payments and the payment ledger
- Rental events (append-only)
- Notifications
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all database tables."""

    # ==================== EQUIPMENT ====================
    op.create_table(
        "equipment",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("damage_deposit_amount", sa.Numeric(10, 2)),
        sa.Column("damage_deposit_percentage", sa.Numeric(5, 2)),
        sa.Column("is_available", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("daily_rate > 0", name="equipment_positive_rate"),
    )

    # ==================== BOOKING REQUESTS ====================
    op.create_table(
        "booking_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("equipment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("equipment.id"), nullable=False, index=True),
        sa.Column("renter_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("start_date", sa.Date, nullable=False, index=True),
        sa.Column("end_date", sa.Date, nullable=False, index=True),
        sa.Column("status", sa.String(40), nullable=False, server_default="pending", index=True),
        sa.Column("status_updated_at", sa.DateTime(timezone=True)),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("insurance_type", sa.String(20), server_default="none"),
        sa.Column("insurance_cost", sa.Numeric(10, 2), server_default="0"),
        sa.Column("damage_deposit_amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("activated_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("disputed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint("start_date <= end_date", name="booking_requests_date_order"),
        sa.CheckConstraint("renter_id <> owner_id", name="booking_requests_no_self_booking"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'awaiting_pickup_inspection', 'awaiting_start_date', "
            "'active', 'awaiting_return_inspection', 'pending_owner_review', 'disputed', "
            "'completed', 'cancelled')",
            name="booking_requests_valid_status",
        ),
    )
    op.create_index(
        "ix_booking_requests_calendar",
        "booking_requests",
        ["equipment_id", "status", "start_date", "end_date"],
    )

    # ==================== INSPECTIONS ====================
    op.create_table(
        "equipment_inspections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("booking_requests.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("inspection_type", sa.String(10), nullable=False),
        sa.Column("verified_by_renter", sa.Boolean, server_default=sa.false()),
        sa.Column("verified_by_owner", sa.Boolean, server_default=sa.false()),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", "inspection_type", name="uq_inspection_booking_type"),
        sa.CheckConstraint("inspection_type IN ('pickup', 'return')", name="inspection_valid_type"),
    )

    # ==================== DAMAGE CLAIMS ====================
    op.create_table(
        "damage_claims",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("booking_requests.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("filed_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("damage_description", sa.Text, nullable=False),
        sa.Column("estimated_cost", sa.Numeric(10, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("resolution", postgresql.JSONB),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'disputed', 'resolved', 'escalated')",
            name="damage_claims_valid_status",
        ),
    )

    # ==================== PAYMENTS ====================
    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_request_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("booking_requests.id"), nullable=False, unique=True),
        sa.Column("renter_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("rental_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("tax", sa.Numeric(10, 2), server_default="0"),
        sa.Column("insurance_amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("deposit_amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("escrow_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("owner_payout_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="usd"),
        sa.Column("payment_status", sa.String(20), server_default="pending", index=True),
        sa.Column("escrow_status", sa.String(20), server_default="held", index=True),
        sa.Column("deposit_status", sa.String(20)),
        sa.Column("payout_status", sa.String(20), server_default="pending"),
        sa.Column("gateway", sa.String(20), server_default="manual"),
        sa.Column("external_payment_intent_id", sa.String(100), unique=True, index=True),
        sa.Column("external_refund_id", sa.String(100)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("refund_amount", sa.Numeric(10, 2)),
        sa.Column("refund_reason", sa.Text),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("escrow_released_at", sa.DateTime(timezone=True)),
        sa.Column("deposit_released_at", sa.DateTime(timezone=True)),
        sa.Column("refunded_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint(
            "total_amount = subtotal + service_fee + tax + insurance_amount + deposit_amount",
            name="payments_valid_amounts",
        ),
        sa.CheckConstraint("total_amount > 0", name="payments_positive_total"),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'succeeded', 'failed', 'cancelled', 'refunded')",
            name="payments_valid_payment_status",
        ),
        sa.CheckConstraint(
            "escrow_status IN ('held', 'released', 'refunded')",
            name="payments_valid_escrow_status",
        ),
    )

    # ==================== PAYMENT LEDGER ====================
    op.create_table(
        "payment_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("payment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payments.id"), nullable=False, index=True),
        sa.Column("booking_request_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("booking_requests.id"), nullable=False, index=True),
        sa.Column("field", sa.String(20), nullable=False),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), server_default="0"),
        sa.Column("reason", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("payment_id", "field", "to_status", name="uq_ledger_payment_field_status"),
    )

    # ==================== RENTAL EVENTS ====================
    op.create_table(
        "rental_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("booking_requests.id"), nullable=False, index=True),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("event_data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== NOTIFICATIONS ====================
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(10), server_default="medium"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("related_entity_type", sa.String(40)),
        sa.Column("related_entity_id", postgresql.UUID(as_uuid=True)),
        sa.Column("is_read", sa.Boolean, server_default=sa.false()),
        sa.Column("push_sent", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notifications_user_unread",
        "notifications",
        ["user_id", "is_read", "created_at"],
    )

    # Append-only tables reject UPDATE and DELETE at the database level too
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_append_only_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    for table in ("payment_ledger_entries", "rental_events"):
        op.execute(
            f"CREATE TRIGGER {table}_append_only BEFORE UPDATE OR DELETE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION reject_append_only_change();"
        )


def downgrade() -> None:
    """Drop all tables."""
    for table in ("payment_ledger_entries", "rental_events"):
        op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table};")
    op.execute("DROP FUNCTION IF EXISTS reject_append_only_change();")

    op.drop_index("ix_notifications_user_unread", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("rental_events")
    op.drop_table("payment_ledger_entries")
    op.drop_table("payments")
    op.drop_table("damage_claims")
    op.drop_table("equipment_inspections")
    op.drop_index("ix_booking_requests_calendar", table_name="booking_requests")
    op.drop_table("booking_requests")
    op.drop_table("equipment")
