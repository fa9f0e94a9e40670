"""User account model holding the points balance."""
from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    CheckConstraint,
)
import uuid
from datetime import datetime, UTC
from rewards_backend.database import Base
from rewards_backend.models.base import get_uuid_column


class UserAccount(Base):
    """Platform user. Only the fields the settlement engine touches live here."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
    )

    user_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    phone_number = Column(String(32), nullable=True)
    points = Column(Integer, default=0, nullable=False)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self):
        return f"<UserAccount(user_id={self.user_id}, email={self.email}, points={self.points})>"
