"""Settlement service: answer submission for reward questions.

A submission runs as one short transaction::

    validate question (fresh read) -> record attempt -> claim slot / credit points -> commit

Payout and UI notification happen afterwards, see ``run_post_settlement``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_backend.config import get_settings
from rewards_backend.models.attempt import RewardQuestionAttempt
from rewards_backend.models.base import PaymentStatus, PointsTransactionType
from rewards_backend.models.winner import InstantRewardWinner
from rewards_backend.services.attempt_store import AttemptStore
from rewards_backend.services.notification_publisher import NotificationPublisher
from rewards_backend.services.payment_providers import PaymentProviderClient
from rewards_backend.services.payout_dispatcher import PayoutDispatcher
from rewards_backend.services.points_ledger import PointsLedgerService
from rewards_backend.services.question_registry import QuestionRegistry
from rewards_backend.services.winner_allocator import (
    FULL,
    WinnerAllocator,
    run_with_contention_retry,
)
from rewards_backend.utils import is_past
from rewards_backend.utils.exceptions import AlreadyAttemptedError, QuestionLifecycleError

logger = logging.getLogger(__name__)

EVENT_ANSWER_SETTLED = "reward.answered"
EVENT_REWARD_WON = "reward.won"
EVENT_PAYOUT_SETTLED = "reward.payout"


def _ordinal(position: int) -> str:
    if 10 <= position % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(position % 10, "th")
    return f"{position}{suffix}"


@dataclass
class SubmissionOutcome:
    """Result of a submission, as returned to the caller."""

    is_correct: bool
    is_winner: bool
    position: int | None
    points_awarded: int
    reward_earned: int
    payment_status: str | None
    payment_reference: str | None
    remaining_spots: int
    already_attempted: bool
    is_expired: bool
    is_completed: bool
    reason: str | None = None
    message: str = ""
    winner_id: UUID | None = None


class SettlementService:
    """Settles answers to reward questions.

    Correctness, idempotency and scarcity are decided in storage: the attempt
    uniqueness constraint gates duplicates and the allocator's
    compare-and-swap gates winner slots. Nothing here holds a lock.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.registry = QuestionRegistry(db)
        self.attempts = AttemptStore(db)
        self.ledger = PointsLedgerService(db)
        self.allocator = WinnerAllocator(db, self.ledger)

    def points_for(self, reward_amount: int) -> int:
        """Convert a currency reward amount to points."""
        return reward_amount // self.settings.currency_per_point

    async def submit_answer(
        self,
        question_id: UUID,
        user_id: UUID,
        selected_answer: str,
        phone_number: str | None = None,
    ) -> SubmissionOutcome:
        """
        Settle one answer.

        Replays the stored outcome when the user already answered, including a
        duplicate that loses the race on the attempt constraint.

        Raises:
            QuestionNotFoundError, QuestionInactiveError, QuestionExpiredError,
            QuestionCompletedError: The question does not accept answers.
            ConcurrentConflictError: The allocator retry budget ran out.
        """
        existing = await self.attempts.get(user_id, question_id)
        if existing is not None:
            logger.info(f"Replaying stored attempt: user={user_id} question={question_id}")
            return await self._replay(existing)

        # Fast path only; the authoritative check runs inside the transaction.
        await self.registry.validate(question_id)

        try:
            return await run_with_contention_retry(
                self.db,
                lambda: self._settle_once(question_id, user_id, selected_answer, phone_number),
                max_attempts=self.settings.allocation_max_attempts,
                backoff_ms=self.settings.allocation_retry_backoff_ms,
                label=f"submit:{question_id}",
            )
        except AlreadyAttemptedError:
            existing = await self.attempts.get(user_id, question_id)
            return await self._replay(existing)
        except QuestionLifecycleError:
            # A concurrent duplicate may have completed the question with this user's own win.
            existing = await self.attempts.get(user_id, question_id)
            if existing is None:
                raise
            return await self._replay(existing)

    async def _settle_once(
        self,
        question_id: UUID,
        user_id: UUID,
        selected_answer: str,
        phone_number: str | None,
    ) -> SubmissionOutcome:
        # Completed is decided by the slot claim from here on; a lost race on the
        # last slot comes back through this path and must settle as FULL.
        question = await self.registry.validate(question_id, allow_completed=True)

        is_correct = selected_answer == question.correct_answer
        points = self.points_for(question.reward_amount) if is_correct else 0

        await self.attempts.record(user_id, question_id, selected_answer, is_correct, points)

        remaining_spots = question.remaining_spots
        if not is_correct:
            return SubmissionOutcome(
                is_correct=False,
                is_winner=False,
                position=None,
                points_awarded=0,
                reward_earned=0,
                payment_status=None,
                payment_reference=None,
                remaining_spots=remaining_spots,
                already_attempted=False,
                is_expired=False,
                is_completed=question.is_completed,
                message="Incorrect answer. This question can only be attempted once.",
            )

        if not question.is_instant_reward:
            if points > 0:
                await self.ledger.credit(
                    user_id,
                    points,
                    PointsTransactionType.REWARD_CORRECT,
                    reference_id=question_id,
                )
            return SubmissionOutcome(
                is_correct=True,
                is_winner=False,
                position=None,
                points_awarded=points,
                reward_earned=points * self.settings.currency_per_point,
                payment_status=None,
                payment_reference=None,
                remaining_spots=remaining_spots,
                already_attempted=False,
                is_expired=False,
                is_completed=question.is_completed,
                message=f"Correct! You earned {points} points.",
            )

        allocation = await self.allocator.claim_slot(
            question_id,
            user_id,
            question.reward_amount,
            points,
            phone_number=phone_number,
        )
        if not allocation.is_winner:
            return SubmissionOutcome(
                is_correct=True,
                is_winner=False,
                position=None,
                points_awarded=points,
                reward_earned=points * self.settings.currency_per_point,
                payment_status=None,
                payment_reference=None,
                remaining_spots=0,
                already_attempted=False,
                is_expired=False,
                is_completed=True,
                reason=FULL,
                message=f"Correct answer! All winners have already been found. You still earned {points} points.",
            )

        return SubmissionOutcome(
            is_correct=True,
            is_winner=True,
            position=allocation.position,
            points_awarded=points,
            reward_earned=allocation.amount_awarded,
            payment_status=PaymentStatus.PENDING.value,
            payment_reference=None,
            remaining_spots=allocation.remaining_spots,
            already_attempted=False,
            is_expired=False,
            is_completed=allocation.is_completed,
            message=(
                f"Congratulations! You are the {_ordinal(allocation.position)} winner! "
                f"You earned {allocation.amount_awarded} ({points} points)."
            ),
            winner_id=allocation.winner_id,
        )

    async def _replay(self, attempt: RewardQuestionAttempt) -> SubmissionOutcome:
        """Rebuild the outcome of a stored attempt without recomputing anything."""
        question = await self.registry.get_question(attempt.question_id)
        result = await self.db.execute(
            select(InstantRewardWinner)
            .where(
                InstantRewardWinner.question_id == attempt.question_id,
                InstantRewardWinner.user_id == attempt.user_id,
            )
            .execution_options(populate_existing=True)
        )
        winner = result.scalar_one_or_none()

        if winner is not None:
            reward_earned = winner.amount_awarded
        else:
            reward_earned = attempt.points_awarded * self.settings.currency_per_point

        reason = None
        if attempt.is_correct and question.is_instant_reward and winner is None:
            reason = FULL

        return SubmissionOutcome(
            is_correct=attempt.is_correct,
            is_winner=winner is not None,
            position=winner.position if winner else None,
            points_awarded=attempt.points_awarded,
            reward_earned=reward_earned,
            payment_status=winner.payment_status if winner else None,
            payment_reference=winner.payment_reference if winner else None,
            remaining_spots=question.remaining_spots,
            already_attempted=True,
            is_expired=is_past(question.expiry_time),
            is_completed=question.is_completed,
            reason=reason,
            message="You have already attempted this question. Each question can only be answered once.",
            winner_id=winner.winner_id if winner else None,
        )


def _outcome_payload(question_id: UUID, outcome: SubmissionOutcome) -> dict:
    return {
        "question_id": str(question_id),
        "is_correct": outcome.is_correct,
        "is_winner": outcome.is_winner,
        "position": outcome.position,
        "points_awarded": outcome.points_awarded,
        "remaining_spots": outcome.remaining_spots,
        "is_completed": outcome.is_completed,
    }


async def run_post_settlement(
    session_factory: async_sessionmaker,
    providers: dict[str, PaymentProviderClient],
    user_id: UUID,
    question_id: UUID,
    outcome: SubmissionOutcome,
) -> None:
    """Dispatch the payout and notify the user after the settlement committed.

    Runs as a background task with its own session. Nothing here can change
    the committed outcome: payout failures land on the winner row and publish
    failures are logged and dropped.
    """
    if outcome.already_attempted:
        return

    async with session_factory() as db:
        publisher = NotificationPublisher(db)
        await publisher.publish(user_id, EVENT_ANSWER_SETTLED, _outcome_payload(question_id, outcome))

        if not outcome.is_winner or outcome.winner_id is None:
            return

        await publisher.publish(
            user_id,
            EVENT_REWARD_WON,
            {
                "question_id": str(question_id),
                "winner_id": str(outcome.winner_id),
                "position": outcome.position,
                "amount_awarded": outcome.reward_earned,
            },
        )

        dispatcher = PayoutDispatcher(db, providers)
        payout = await dispatcher.dispatch(outcome.winner_id)

        await publisher.publish(
            user_id,
            EVENT_PAYOUT_SETTLED,
            {
                "question_id": str(question_id),
                "winner_id": str(outcome.winner_id),
                "payment_status": payout.status,
                "payment_reference": payout.reference,
                "dispatched_at": datetime.now(UTC).isoformat(),
            },
        )
