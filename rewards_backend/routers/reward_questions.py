"""Reward questions API router."""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from datetime import datetime, UTC
from uuid import UUID
import logging

from rewards_backend.database import get_db, get_session_factory
from rewards_backend.dependencies import get_current_user, get_payout_providers
from rewards_backend.models.reward_question import RewardQuestion
from rewards_backend.models.user import UserAccount
from rewards_backend.schemas.reward_question import (
    CreateRewardQuestionRequest,
    RewardQuestionListResponse,
    RewardQuestionResponse,
    SetActiveRequest,
    WinnerListResponse,
    WinnerResponse,
)
from rewards_backend.schemas.submission import SubmissionResult, SubmitAnswerRequest
from rewards_backend.services import (
    PaymentProviderClient,
    QuestionRegistry,
    SettlementService,
    question_state,
    run_post_settlement,
)
from rewards_backend.models.base import QuestionState
from rewards_backend.utils.exceptions import (
    ConcurrentConflictError,
    QuestionCompletedError,
    QuestionExpiredError,
    QuestionInactiveError,
    QuestionNotFoundError,
    QuestionValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CONFLICT_RETRY_AFTER_SECONDS = 1


def _question_response(question: RewardQuestion, winners=None) -> RewardQuestionResponse:
    """Build the public view of a question; the correct answer never leaves the server."""
    now = datetime.now(UTC)
    state = question_state(question, now)
    return RewardQuestionResponse(
        question_id=question.question_id,
        text=question.text,
        options=list(question.options or []),
        reward_amount=question.reward_amount,
        is_instant_reward=question.is_instant_reward,
        max_winners=question.max_winners,
        winners_count=question.winners_count,
        remaining_spots=question.remaining_spots,
        is_completed=question.is_completed,
        is_active=question.is_active,
        is_expired=state == QuestionState.EXPIRED,
        state=state.value,
        expiry_time=question.expiry_time,
        payment_provider=question.payment_provider,
        created_at=question.created_at,
        winners=[WinnerResponse.model_validate(winner) for winner in (winners or [])],
    )


@router.post("", response_model=RewardQuestionResponse, status_code=201)
async def create_reward_question(
    request: CreateRewardQuestionRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a reward question owned by the current user."""
    registry = QuestionRegistry(db)
    try:
        question = await registry.create_question(
            created_by_user_id=user.user_id,
            text=request.text,
            options=request.options,
            correct_answer=request.correct_answer,
            reward_amount=request.reward_amount,
            expiry_time=request.expiry_time,
            is_instant_reward=request.is_instant_reward,
            max_winners=request.max_winners,
            payment_provider=request.payment_provider,
            phone_number=request.phone_number,
        )
    except QuestionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return _question_response(question)


@router.get("/instant", response_model=RewardQuestionListResponse)
async def list_instant_reward_questions(
    limit: int = Query(50, ge=1, le=100),
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open instant reward questions with their winners so far."""
    registry = QuestionRegistry(db)
    questions = await registry.list_open_instant_questions(limit=limit)
    return RewardQuestionListResponse(
        questions=[_question_response(question, question.winners) for question in questions],
        total=len(questions),
    )


@router.get("/{question_id}", response_model=RewardQuestionResponse)
async def get_reward_question(
    question_id: UUID,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """One question with its winners ordered by position."""
    registry = QuestionRegistry(db)
    question = await registry.get_question(question_id, with_winners=True)
    if not question:
        raise HTTPException(status_code=404, detail="question_not_found")
    return _question_response(question, question.winners)


@router.patch("/{question_id}", response_model=RewardQuestionResponse)
async def set_reward_question_active(
    question_id: UUID,
    request: SetActiveRequest,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Owner action: deactivate or reactivate a question."""
    registry = QuestionRegistry(db)
    question = await registry.get_question(question_id)
    if not question:
        raise HTTPException(status_code=404, detail="question_not_found")
    if question.created_by_user_id != user.user_id:
        raise HTTPException(status_code=403, detail="not_question_owner")

    question = await registry.set_active(question_id, request.is_active)
    return _question_response(question)


@router.get("/{question_id}/winners", response_model=WinnerListResponse)
async def list_reward_question_winners(
    question_id: UUID,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Winners of a question ordered by position."""
    registry = QuestionRegistry(db)
    if not await registry.get_question(question_id):
        raise HTTPException(status_code=404, detail="question_not_found")
    winners = await registry.list_winners(question_id)
    return WinnerListResponse(
        question_id=question_id,
        winners=[WinnerResponse.model_validate(winner) for winner in winners],
    )


@router.post("/{question_id}/answer", response_model=SubmissionResult)
async def submit_reward_answer(
    question_id: UUID,
    request: SubmitAnswerRequest,
    background_tasks: BackgroundTasks,
    user: UserAccount = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    providers: dict[str, PaymentProviderClient] = Depends(get_payout_providers),
):
    """Submit an answer. Replays return the stored outcome with ``already_attempted``."""
    # Read before settling: a rolled-back try expires ORM state on this session
    user_id = user.user_id
    service = SettlementService(db)
    try:
        outcome = await service.submit_answer(
            question_id,
            user_id,
            request.selected_answer,
            phone_number=request.phone_number,
        )
    except QuestionNotFoundError:
        raise HTTPException(status_code=404, detail="question_not_found")
    except QuestionInactiveError:
        raise HTTPException(status_code=403, detail="question_inactive")
    except QuestionExpiredError:
        raise HTTPException(status_code=410, detail="question_expired")
    except QuestionCompletedError:
        raise HTTPException(status_code=409, detail="question_completed")
    except ConcurrentConflictError:
        logger.warning(f"Submission for {question_id} by {user_id} gave up under contention")
        raise HTTPException(
            status_code=409,
            detail="concurrent_conflict",
            headers={"Retry-After": str(CONFLICT_RETRY_AFTER_SECONDS)},
        )

    logger.info(
        f"[API /reward-questions/answer] user={user_id} question={question_id} "
        f"correct={outcome.is_correct} winner={outcome.is_winner} position={outcome.position} "
        f"replay={outcome.already_attempted}"
    )

    background_tasks.add_task(
        run_post_settlement,
        session_factory,
        providers,
        user_id,
        question_id,
        outcome,
    )
    return SubmissionResult.model_validate(outcome)
