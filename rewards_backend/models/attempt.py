"""Reward question attempt model."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
import uuid
from datetime import datetime, UTC
from rewards_backend.database import Base
from rewards_backend.models.base import get_uuid_column


class RewardQuestionAttempt(Base):
    """One answer per (user, question); the unique constraint is the idempotency gate."""

    __tablename__ = "reward_question_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_reward_question_attempts_user_question"),
    )

    attempt_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    user_id = get_uuid_column(ForeignKey("users.user_id"), nullable=False, index=True)
    question_id = get_uuid_column(ForeignKey("reward_questions.question_id"), nullable=False, index=True)
    selected_answer = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    points_awarded = Column(Integer, default=0, nullable=False)
    attempted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    def __repr__(self):
        return (f"<RewardQuestionAttempt(attempt_id={self.attempt_id}, user_id={self.user_id}, "
                f"question_id={self.question_id}, is_correct={self.is_correct})>")
