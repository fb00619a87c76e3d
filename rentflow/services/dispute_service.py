"""Damage claim service."""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.domain.dispute_state import OPEN_CLAIM_STATUSES, assert_claim_transition
from rentflow.models.booking import DamageClaim


class DisputeService:
    """Service for the damage claim lifecycle. Never commits."""

    async def open_claim(
        self,
        db: AsyncSession,
        booking_id: UUID,
        filed_by: UUID,
        description: str,
        estimated_cost: Decimal = Decimal("0"),
    ) -> DamageClaim:
        """File a new pending claim."""
        claim = DamageClaim(
            booking_id=booking_id,
            filed_by=filed_by,
            damage_description=description,
            estimated_cost=estimated_cost,
            status="pending",
        )
        db.add(claim)
        await db.flush()
        return claim

    async def list_claims(self, db: AsyncSession, booking_id: UUID) -> list[DamageClaim]:
        result = await db.execute(
            select(DamageClaim)
            .where(DamageClaim.booking_id == booking_id)
            .order_by(DamageClaim.created_at)
        )
        return list(result.scalars().all())

    async def get_open_claims(self, db: AsyncSession, booking_id: UUID) -> list[DamageClaim]:
        result = await db.execute(
            select(DamageClaim)
            .where(
                DamageClaim.booking_id == booking_id,
                DamageClaim.status.in_(OPEN_CLAIM_STATUSES),
            )
            .order_by(DamageClaim.created_at)
        )
        return list(result.scalars().all())

    async def resolve_open_claims(
        self,
        db: AsyncSession,
        booking_id: UUID,
        deduction_amount: Decimal,
        resolution: dict[str, Any] | None = None,
    ) -> list[DamageClaim]:
        """Close every open claim on the booking with the admin's decision."""
        claims = await self.get_open_claims(db, booking_id)
        now = datetime.now(UTC)
        for claim in claims:
            assert_claim_transition(claim.status, "resolved")
            claim.status = "resolved"
            claim.resolution = {**(resolution or {}), "deduction_amount": str(deduction_amount)}
            claim.resolved_at = now
        await db.flush()
        return claims


# Singleton instance
dispute_service = DisputeService()
