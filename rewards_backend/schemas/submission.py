"""Answer submission Pydantic schemas."""
from pydantic import BaseModel, Field, field_validator
from rewards_backend.schemas.base import BaseSchema


class SubmitAnswerRequest(BaseModel):
    """Submit answer request."""
    selected_answer: str = Field(..., min_length=1, max_length=255)
    phone_number: str | None = Field(None, max_length=32)

    @field_validator('phone_number')
    @classmethod
    def blank_phone_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SubmissionResult(BaseSchema):
    """Outcome of an answer submission, including idempotent replays."""
    is_correct: bool
    is_winner: bool
    position: int | None = None
    reason: str | None = None  # "FULL" when correct but all slots were taken
    points_awarded: int
    reward_earned: int
    payment_status: str | None = None
    payment_reference: str | None = None
    remaining_spots: int
    already_attempted: bool
    is_expired: bool
    is_completed: bool
    message: str
