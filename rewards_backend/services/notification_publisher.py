"""
Event log for real-time reward updates.

Events are appended to ``reward_events`` and polled by clients with
``GET /events?after_seq=N``. Publishing is fire-and-forget: a failure is
logged and dropped, never surfaced to the settlement that triggered it.
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import get_settings
from rewards_backend.models.reward_event import RewardEvent

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Appends and reads per-user reward events."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def publish(self, user_id: UUID, event_type: str, payload: dict[str, Any]) -> RewardEvent | None:
        """Append an event and commit it. Returns None if it could not be stored."""
        event = RewardEvent(user_id=user_id, event_type=event_type, payload=payload)
        try:
            self.db.add(event)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to publish {event_type} for user {user_id}: {e}")
            return None

        logger.debug(f"Published {event_type} for user {user_id} (seq={event.seq})")
        return event

    async def list_events(self, user_id: UUID, after_seq: int = 0, limit: int = 100) -> list[RewardEvent]:
        """Events for a user with ``seq > after_seq``, oldest first."""
        result = await self.db.execute(
            select(RewardEvent)
            .where(RewardEvent.user_id == user_id, RewardEvent.seq > after_seq)
            .order_by(RewardEvent.seq.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cleanup_old_events(self, older_than_minutes: int | None = None) -> int:
        """Delete events past the retention window. Returns the number removed."""
        minutes = older_than_minutes or self.settings.event_retention_minutes
        cutoff = datetime.now(UTC) - timedelta(minutes=minutes)
        result = await self.db.execute(
            delete(RewardEvent).where(RewardEvent.created_at < cutoff)
        )
        await self.db.commit()
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Removed {deleted} reward events older than {minutes} minutes")
        return deleted
