"""Reward question model."""
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, UTC
from rewards_backend.database import Base
from rewards_backend.models.base import get_uuid_column


class RewardQuestion(Base):
    """A gated question paying out to its first ``max_winners`` correct answerers.

    ``winners_count`` and ``is_completed`` are written only by the winner
    allocator's conditional update, always together.
    """

    __tablename__ = "reward_questions"
    __table_args__ = (
        CheckConstraint(
            "winners_count >= 0 AND winners_count <= max_winners",
            name="ck_reward_questions_winners_count_range",
        ),
        CheckConstraint("max_winners >= 1", name="ck_reward_questions_max_winners_positive"),
        Index("ix_reward_questions_instant_open", "is_instant_reward", "is_active", "is_completed"),
    )

    question_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_answer = Column(Text, nullable=False)
    reward_amount = Column(Integer, nullable=False)
    is_instant_reward = Column(Boolean, default=False, nullable=False)
    max_winners = Column(Integer, default=2, nullable=False)
    winners_count = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expiry_time = Column(DateTime(timezone=True), nullable=True, index=True)
    payment_provider = Column(String(20), nullable=True)
    phone_number = Column(String(32), nullable=True)
    created_by_user_id = get_uuid_column(nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    winners = relationship(
        "InstantRewardWinner",
        order_by="InstantRewardWinner.position",
        lazy="raise",
        viewonly=True,
    )

    @property
    def remaining_spots(self) -> int:
        return max(self.max_winners - self.winners_count, 0)

    def __repr__(self):
        return (f"<RewardQuestion(question_id={self.question_id}, winners={self.winners_count}/"
                f"{self.max_winners}, instant={self.is_instant_reward})>")
