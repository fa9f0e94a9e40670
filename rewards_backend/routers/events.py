"""Reward event feed router."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.database import get_db
from rewards_backend.dependencies import get_current_user
from rewards_backend.models.user import UserAccount
from rewards_backend.schemas.event import RewardEventListResponse, RewardEventResponse
from rewards_backend.services import NotificationPublisher

router = APIRouter()


@router.get("", response_model=RewardEventListResponse)
async def list_reward_events(
    after_seq: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's reward events after ``after_seq``, oldest first."""
    publisher = NotificationPublisher(db)
    events = await publisher.list_events(user.user_id, after_seq=after_seq, limit=limit)
    return RewardEventListResponse(
        events=[RewardEventResponse.model_validate(event) for event in events],
        last_seq=events[-1].seq if events else after_seq,
    )
