"""Booking conflict checker."""

import logging
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.domain.booking_state import BLOCKING_STATUSES
from rentflow.models.booking import BookingRequest

logger = logging.getLogger(__name__)


def overlap_clause(start_date: date, end_date: date):
    """Rows whose occupied days overlap the requested ones.

    A booking occupies the half-open range [start_date, end_date), so a rental
    may start on the day another one ends. A same-day rental (start == end)
    occupies its single day.
    """
    end = max(end_date, start_date + timedelta(days=1))
    return and_(
        BookingRequest.start_date < end,
        or_(
            BookingRequest.end_date > start_date,
            and_(
                BookingRequest.start_date == BookingRequest.end_date,
                BookingRequest.start_date >= start_date,
            ),
        ),
    )


class ConflictService:
    """Finds confirmed bookings that occupy the same equipment and dates."""

    async def find_conflicts(
        self,
        db: AsyncSession,
        equipment_id: UUID,
        start_date: date,
        end_date: date,
        exclude_booking_id: UUID | None = None,
    ) -> list[BookingRequest]:
        query = select(BookingRequest).where(
            BookingRequest.equipment_id == equipment_id,
            BookingRequest.status.in_(BLOCKING_STATUSES),
            overlap_clause(start_date, end_date),
        )
        if exclude_booking_id is not None:
            query = query.where(BookingRequest.id != exclude_booking_id)
        result = await db.execute(query)
        return list(result.scalars().unique().all())

    async def is_available(
        self,
        db: AsyncSession,
        equipment_id: UUID,
        start_date: date,
        end_date: date,
        exclude_booking_id: UUID | None = None,
    ) -> bool:
        """Check if dates are free for the equipment."""
        conflicts = await self.find_conflicts(
            db, equipment_id, start_date, end_date, exclude_booking_id
        )
        if conflicts:
            logger.info(
                f"Equipment {equipment_id} has {len(conflicts)} conflicting booking(s) "
                f"for {start_date}..{end_date}"
            )
        return not conflicts


# Singleton instance
conflict_service = ConflictService()
