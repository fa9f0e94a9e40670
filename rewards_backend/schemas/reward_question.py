"""Reward question Pydantic schemas."""
from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID
from rewards_backend.schemas.base import BaseSchema


class CreateRewardQuestionRequest(BaseModel):
    """Create reward question request. Business rules are checked by the registry."""
    text: str = Field(..., max_length=1000)
    options: list[str] = Field(..., min_length=2, max_length=10)
    correct_answer: str = Field(..., max_length=255)
    reward_amount: int
    expiry_time: datetime | None = None
    is_instant_reward: bool = False
    max_winners: int | None = None
    payment_provider: str | None = None
    phone_number: str | None = Field(None, max_length=32)


class SetActiveRequest(BaseModel):
    """Owner toggle for a question."""
    is_active: bool


class WinnerResponse(BaseSchema):
    """Winner slot as shown to players. The payout phone number is not exposed."""
    winner_id: UUID
    user_id: UUID
    position: int
    amount_awarded: int
    payment_status: str
    payment_provider: str | None = None
    payment_reference: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class RewardQuestionResponse(BaseSchema):
    """Reward question without its correct answer."""
    question_id: UUID
    text: str
    options: list[str]
    reward_amount: int
    is_instant_reward: bool
    max_winners: int
    winners_count: int
    remaining_spots: int
    is_completed: bool
    is_active: bool
    is_expired: bool = False
    state: str
    expiry_time: datetime | None = None
    payment_provider: str | None = None
    created_at: datetime
    winners: list[WinnerResponse] = []


class RewardQuestionListResponse(BaseModel):
    """List of open instant reward questions."""
    questions: list[RewardQuestionResponse]
    total: int


class WinnerListResponse(BaseModel):
    """Winners of a question ordered by position."""
    question_id: UUID
    winners: list[WinnerResponse]
