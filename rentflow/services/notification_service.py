"""Notification sink.

Fire-and-forget delivery of user-facing booking events:
- In-app notifications (database, own session)
- Push relay (HTTP webhook, optional)

Nothing here raises. A lost notification must never undo a booking transition,
so every failure is logged and swallowed.
"""

import logging
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rentflow.config import settings
from rentflow.database import async_session_maker
from rentflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for sending booking notifications."""

    # Notification types
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    RENTAL_STARTED = "rental_started"
    DAMAGE_CLAIM = "damage_claim"

    # Priorities
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_maker
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def create_notification(
        self,
        user_id: UUID,
        notification_type: str,
        title: str,
        message: str,
        related_entity_type: str | None = None,
        related_entity_id: UUID | None = None,
        priority: str = MEDIUM,
    ) -> Notification:
        """Persist an in-app notification in its own transaction."""
        async with self._session_factory() as db:
            notification = Notification(
                user_id=user_id,
                type=notification_type,
                priority=priority,
                title=title,
                message=message,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
            )
            db.add(notification)
            await db.commit()
            return notification

    async def send_push(self, user_id: UUID, title: str, message: str, data: dict) -> bool:
        """Relay a push notification to the configured delivery webhook."""
        if not settings.notification_webhook_url:
            return False

        response = await self.http_client.post(
            settings.notification_webhook_url,
            json={
                "user_id": str(user_id),
                "title": title,
                "message": message,
                "data": data,
            },
        )
        return response.status_code in (200, 201, 202)

    async def notify(
        self,
        user_id: UUID,
        notification_type: str,
        title: str,
        message: str,
        related_entity_type: str | None = "booking",
        related_entity_id: UUID | None = None,
        priority: str = MEDIUM,
    ) -> None:
        """Deliver a notification on every channel. Never raises."""
        try:
            await self.create_notification(
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
                priority=priority,
            )
        except Exception:
            logger.exception(f"Failed to store {notification_type} notification for user {user_id}")
            return

        try:
            await self.send_push(
                user_id,
                title,
                message,
                {
                    "type": notification_type,
                    "priority": priority,
                    "related_entity_id": str(related_entity_id) if related_entity_id else "",
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Push delivery failed for user {user_id}: {e}")


# Singleton instance
notification_service = NotificationService()
