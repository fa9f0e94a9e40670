"""Instant reward winner model."""
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
import uuid
from datetime import datetime, UTC
from rewards_backend.database import Base
from rewards_backend.models.base import PaymentStatus, get_uuid_column


class InstantRewardWinner(Base):
    """A claimed winner slot and the state of its payout."""

    __tablename__ = "instant_reward_winners"
    __table_args__ = (
        UniqueConstraint("question_id", "user_id", name="uq_instant_reward_winners_question_user"),
        UniqueConstraint("question_id", "position", name="uq_instant_reward_winners_question_position"),
        Index("ix_instant_reward_winners_status_created", "payment_status", "created_at"),
    )

    winner_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    question_id = get_uuid_column(ForeignKey("reward_questions.question_id"), nullable=False, index=True)
    user_id = get_uuid_column(ForeignKey("users.user_id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    amount_awarded = Column(Integer, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    payment_provider = Column(String(20), nullable=True)
    phone_number = Column(String(32), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payout_attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def is_settled(self) -> bool:
        return self.payment_status != PaymentStatus.PENDING.value

    def __repr__(self):
        return (f"<InstantRewardWinner(winner_id={self.winner_id}, question_id={self.question_id}, "
                f"position={self.position}, status={self.payment_status})>")
