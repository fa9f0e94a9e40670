"""Question registry: reward question configuration and lifecycle checks."""
import logging
import uuid
from datetime import datetime, UTC
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rewards_backend.config import get_settings
from rewards_backend.models.base import PaymentProvider, QuestionState
from rewards_backend.models.reward_question import RewardQuestion
from rewards_backend.models.winner import InstantRewardWinner
from rewards_backend.utils import ensure_utc, is_past
from rewards_backend.utils.exceptions import (
    QuestionCompletedError,
    QuestionExpiredError,
    QuestionInactiveError,
    QuestionNotFoundError,
    QuestionValidationError,
)

logger = logging.getLogger(__name__)


def question_state(question: RewardQuestion, now: datetime | None = None) -> QuestionState:
    """Derive the answering state of a question.

    Expiry is a read-time check with no stored transition. Inactive wins over
    the other states because it is an explicit owner action.
    """
    if not question.is_active:
        return QuestionState.INACTIVE
    if question.is_completed or question.winners_count >= question.max_winners:
        return QuestionState.COMPLETED
    if is_past(question.expiry_time, now):
        return QuestionState.EXPIRED
    return QuestionState.ACTIVE


class QuestionRegistry:
    """Reads, validates and creates reward questions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def get_question(self, question_id: UUID, *, with_winners: bool = False) -> RewardQuestion | None:
        """Load a question from the database, bypassing any stale identity-map copy."""
        stmt = (
            select(RewardQuestion)
            .where(RewardQuestion.question_id == question_id)
            .execution_options(populate_existing=True)
        )
        if with_winners:
            stmt = stmt.options(selectinload(RewardQuestion.winners))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def validate(
        self,
        question_id: UUID,
        now: datetime | None = None,
        *,
        allow_completed: bool = False,
    ) -> RewardQuestion:
        """Return the question if it accepts answers right now.

        Called once before the settlement transaction as a fast path and again
        inside it; the in-transaction call is the one that counts. Inside the
        transaction ``allow_completed`` is set: a question that filled up after
        the fast path still settles, and the allocator answers FULL.

        Raises:
            QuestionNotFoundError, QuestionInactiveError, QuestionExpiredError,
            QuestionCompletedError
        """
        question = await self.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(f"Reward question not found: {question_id}")

        if not question.is_active:
            raise QuestionInactiveError(f"Reward question {question_id} is not active")

        if is_past(question.expiry_time, now):
            raise QuestionExpiredError(f"Reward question {question_id} has expired")

        if question.is_completed and not allow_completed:
            raise QuestionCompletedError(f"Reward question {question_id} has all its winners")

        return question

    async def create_question(
        self,
        created_by_user_id: UUID,
        text: str,
        options: Sequence[str],
        correct_answer: str,
        reward_amount: int,
        expiry_time: datetime | None = None,
        is_instant_reward: bool = False,
        max_winners: int | None = None,
        payment_provider: str | None = None,
        phone_number: str | None = None,
    ) -> RewardQuestion:
        """Validate and store a new reward question.

        Raises:
            QuestionValidationError: If any field is missing or out of range.
        """
        text = (text or "").strip()
        options = [str(option).strip() for option in (options or [])]
        correct_answer = (correct_answer or "").strip()
        if max_winners is None:
            max_winners = self.settings.default_max_winners

        if not text or not options or not correct_answer:
            raise QuestionValidationError("text_options_and_correct_answer_required")
        if any(not option for option in options):
            raise QuestionValidationError("options_must_not_be_blank")
        if len(set(options)) != len(options):
            raise QuestionValidationError("options_must_be_unique")
        if correct_answer not in options:
            raise QuestionValidationError("correct_answer_not_in_options")
        if reward_amount is None or reward_amount <= 0:
            raise QuestionValidationError("reward_amount_must_be_positive")
        if expiry_time is not None and is_past(expiry_time):
            raise QuestionValidationError("expiry_time_in_past")

        if is_instant_reward:
            if not payment_provider or not phone_number:
                raise QuestionValidationError("payment_provider_and_phone_number_required")
            try:
                payment_provider = PaymentProvider(payment_provider.upper()).value
            except ValueError as exc:
                raise QuestionValidationError("invalid_payment_provider") from exc
            if not 1 <= max_winners <= self.settings.max_winners_limit:
                raise QuestionValidationError("max_winners_out_of_range")
        else:
            payment_provider = None
            phone_number = None

        question = RewardQuestion(
            question_id=uuid.uuid4(),
            text=text,
            options=options,
            correct_answer=correct_answer,
            reward_amount=reward_amount,
            expiry_time=ensure_utc(expiry_time),
            is_instant_reward=is_instant_reward,
            max_winners=max_winners,
            winners_count=0,
            is_completed=False,
            is_active=True,
            payment_provider=payment_provider,
            phone_number=phone_number,
            created_by_user_id=created_by_user_id,
        )
        self.db.add(question)
        await self.db.commit()
        await self.db.refresh(question)

        logger.info(
            f"Reward question created: {question.question_id} instant={is_instant_reward} "
            f"max_winners={max_winners} reward={reward_amount}"
        )
        return question

    async def set_active(self, question_id: UUID, is_active: bool) -> RewardQuestion:
        """Owner action: deactivate or reactivate a question."""
        question = await self.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(f"Reward question not found: {question_id}")
        question.is_active = is_active
        await self.db.commit()
        await self.db.refresh(question)
        logger.info(f"Reward question {question_id} is_active={is_active}")
        return question

    async def list_open_instant_questions(self, limit: int = 50) -> list[RewardQuestion]:
        """Active, unexpired, uncompleted instant questions with their winners, newest first."""
        now = datetime.now(UTC)
        result = await self.db.execute(
            select(RewardQuestion)
            .where(
                RewardQuestion.is_active.is_(True),
                RewardQuestion.is_instant_reward.is_(True),
                RewardQuestion.is_completed.is_(False),
                or_(RewardQuestion.expiry_time.is_(None), RewardQuestion.expiry_time > now),
            )
            .options(selectinload(RewardQuestion.winners))
            .order_by(RewardQuestion.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_winners(self, question_id: UUID) -> list[InstantRewardWinner]:
        """Winners of a question ordered by position."""
        result = await self.db.execute(
            select(InstantRewardWinner)
            .where(InstantRewardWinner.question_id == question_id)
            .order_by(InstantRewardWinner.position.asc())
        )
        return list(result.scalars().all())
