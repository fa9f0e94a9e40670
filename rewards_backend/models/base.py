"""Base utilities for SQLAlchemy models."""
from enum import Enum
import uuid
from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.sql import sqltypes


class PaymentStatus(str, Enum):
    """Payout status of an instant reward winner."""
    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"


class PaymentProvider(str, Enum):
    """Supported mobile-money providers."""
    MTN = "MTN"
    AIRTEL = "AIRTEL"


class QuestionState(str, Enum):
    """Answering state of a reward question, derived at read time."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    COMPLETED = "completed"


class PointsTransactionType(str, Enum):
    """Ledger entry types written by the settlement engine."""
    INSTANT_REWARD_WIN = "instant_reward_win"
    INSTANT_REWARD_CORRECT = "instant_reward_correct"
    REWARD_CORRECT = "reward_correct"


class AdaptiveUUID(sqltypes.TypeDecorator):
    """UUID stored natively on PostgreSQL and as hex text elsewhere."""

    impl = sqltypes.String
    cache_ok = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._uses_native_uuid = False

    def load_dialect_impl(self, dialect):
        self._uses_native_uuid = dialect.name == "postgresql"
        if self._uses_native_uuid:
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    @staticmethod
    def _coerce_uuid(value):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    def process_bind_param(self, value, dialect):
        value = self._coerce_uuid(value)
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return value.hex

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self._coerce_uuid(value)


def get_uuid_column(*args, **kwargs):
    """Get UUID column type based on database dialect.

    Example:
        winner_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
        question_id = get_uuid_column(ForeignKey("reward_questions.question_id"), nullable=False)
    """
    return Column(
        AdaptiveUUID(),
        *args,
        **kwargs
    )
