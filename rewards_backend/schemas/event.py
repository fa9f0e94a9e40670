"""Reward event feed schemas."""
from pydantic import BaseModel
from datetime import datetime
from typing import Any
from uuid import UUID
from rewards_backend.schemas.base import BaseSchema


class RewardEventResponse(BaseSchema):
    """One event from the user's feed."""
    seq: int
    event_id: UUID
    event_type: str
    payload: dict[str, Any] | None = None
    created_at: datetime


class RewardEventListResponse(BaseModel):
    """Events after the requested sequence number."""
    events: list[RewardEventResponse]
    last_seq: int
