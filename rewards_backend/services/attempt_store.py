"""Attempt store: the (user, question) idempotency gate."""
import logging
import uuid
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.models.attempt import RewardQuestionAttempt
from rewards_backend.utils.exceptions import AlreadyAttemptedError

logger = logging.getLogger(__name__)


class AttemptStore:
    """Records answer attempts, at most one per (user, question).

    Uniqueness is enforced by ``uq_reward_question_attempts_user_question``.
    ``record`` never reads before writing: two concurrent requests from the
    same user both try the insert and the database lets exactly one through.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        user_id: UUID,
        question_id: UUID,
        selected_answer: str,
        is_correct: bool,
        points_awarded: int = 0,
    ) -> RewardQuestionAttempt:
        """Insert an attempt inside the caller's transaction.

        Raises:
            AlreadyAttemptedError: If an attempt for (user, question) exists.
                The session's transaction has been rolled back at that point.
        """
        attempt = RewardQuestionAttempt(
            attempt_id=uuid.uuid4(),
            user_id=user_id,
            question_id=question_id,
            selected_answer=selected_answer,
            is_correct=is_correct,
            points_awarded=points_awarded,
        )
        self.db.add(attempt)

        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            # A foreign key violation lands here too; only a stored attempt means a duplicate.
            existing = await self.get(user_id, question_id)
            if existing is None:
                raise
            logger.info(f"Duplicate attempt rejected by constraint: {user_id=} {question_id=}")
            raise AlreadyAttemptedError(user_id, question_id) from exc

        return attempt

    async def get(self, user_id: UUID, question_id: UUID) -> RewardQuestionAttempt | None:
        """Read back the stored attempt for (user, question), if any."""
        result = await self.db.execute(
            select(RewardQuestionAttempt)
            .where(
                RewardQuestionAttempt.user_id == user_id,
                RewardQuestionAttempt.question_id == question_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_for_question(self, question_id: UUID) -> int:
        """Number of attempts recorded against a question."""
        result = await self.db.execute(
            select(func.count())
            .select_from(RewardQuestionAttempt)
            .where(RewardQuestionAttempt.question_id == question_id)
        )
        return result.scalar_one()
