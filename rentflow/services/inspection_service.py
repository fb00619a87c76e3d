"""Inspection verifier."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.models.booking import Inspection

PICKUP = "pickup"
RETURN = "return"
INSPECTION_TYPES = (PICKUP, RETURN)


class InspectionService:
    """Checks inspection records against the party required to verify them."""

    async def get_inspection(
        self, db: AsyncSession, booking_id: UUID, inspection_type: str
    ) -> Inspection | None:
        result = await db.execute(
            select(Inspection).where(
                Inspection.booking_id == booking_id,
                Inspection.inspection_type == inspection_type,
            )
        )
        return result.scalar_one_or_none()

    async def is_verified_by_renter(
        self, db: AsyncSession, booking_id: UUID, inspection_type: str
    ) -> bool:
        inspection = await self.get_inspection(db, booking_id, inspection_type)
        return bool(inspection and inspection.verified_by_renter)

    async def record_renter_inspection(
        self,
        db: AsyncSession,
        booking_id: UUID,
        inspection_type: str,
        notes: str | None = None,
    ) -> Inspection:
        """Create or update the renter's side of an inspection. Does not commit."""
        inspection = await self.get_inspection(db, booking_id, inspection_type)
        if inspection is None:
            inspection = Inspection(
                booking_id=booking_id,
                inspection_type=inspection_type,
                verified_by_renter=True,
                verified_by_owner=False,
                notes=notes,
            )
            db.add(inspection)
        else:
            inspection.verified_by_renter = True
            if notes is not None:
                inspection.notes = notes
        await db.flush()
        return inspection

    async def mark_verified_by_owner(
        self, db: AsyncSession, booking_id: UUID, inspection_type: str = RETURN
    ) -> bool:
        """Flag the owner's confirmation. Returns False when no record exists."""
        result = await db.execute(
            update(Inspection)
            .where(
                Inspection.booking_id == booking_id,
                Inspection.inspection_type == inspection_type,
            )
            .values(verified_by_owner=True)
        )
        return result.rowcount > 0


# Singleton instance
inspection_service = InspectionService()
