"""Reward event log model."""
import uuid
from datetime import datetime, UTC

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String

from rewards_backend.database import Base
from rewards_backend.models.base import get_uuid_column


class RewardEvent(Base):
    """Event pushed to a user's real-time feed (polled by the UI)."""

    __tablename__ = "reward_events"
    __table_args__ = (
        Index("ix_reward_events_user_seq", "user_id", "seq"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    event_id = get_uuid_column(unique=True, nullable=False, default=uuid.uuid4)
    user_id = get_uuid_column(nullable=False)
    event_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<RewardEvent(seq={self.seq}, type={self.event_type}, user={self.user_id})>"
