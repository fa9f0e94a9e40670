"""Points ledger model."""
from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    ForeignKey,
)
import uuid
from datetime import datetime, UTC
from rewards_backend.database import Base
from rewards_backend.models.base import get_uuid_column


class PointsTransaction(Base):
    """Append-only record of every points credit."""

    __tablename__ = "points_transactions"

    transaction_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    user_id = get_uuid_column(ForeignKey("users.user_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False, index=True)
    reference_id = get_uuid_column(nullable=True, index=True)  # question_id
    balance_after = Column(Integer, nullable=True)  # For audit trail
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)

    def __repr__(self):
        return (f"<PointsTransaction(transaction_id={self.transaction_id}, amount={self.amount}, "
                f"type={self.type})>")
