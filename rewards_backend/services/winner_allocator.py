"""Winner allocator: scarcity-safe claiming of instant reward slots.

A slot claim is an optimistic compare-and-swap on the question row::

    UPDATE reward_questions
       SET winners_count = :snapshot + 1, is_completed = (:snapshot + 1 >= max_winners)
     WHERE question_id = :question_id AND winners_count = :snapshot

Two allocators that read the same snapshot can both issue the update, but
only the first to commit changes a row; the other sees ``rowcount == 0``,
rolls back everything it wrote in the transaction and retries with a fresh
snapshot. No row lock or application lock is held, and no network I/O happens
between the snapshot read and the commit.
"""
import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import get_settings
from rewards_backend.models.base import PaymentStatus, PointsTransactionType
from rewards_backend.models.reward_question import RewardQuestion
from rewards_backend.models.winner import InstantRewardWinner
from rewards_backend.services.points_ledger import PointsLedgerService
from rewards_backend.utils.exceptions import (
    ConcurrentConflictError,
    QuestionNotFoundError,
    SlotContentionError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FULL = "FULL"

# SQLSTATE serialization_failure and deadlock_detected
_TRANSIENT_SQLSTATES = {"40001", "40P01"}
_TRANSIENT_MESSAGES = ("database is locked", "could not serialize", "deadlock detected")


def is_transient_db_error(exc: DBAPIError) -> bool:
    """True for lock/serialization failures that a fresh transaction can succeed past."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


async def run_with_contention_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff_ms: int,
    label: str,
) -> T:
    """Run ``operation`` in a transaction and commit, retrying on slot contention.

    Each try starts from a clean session state, so every row written by a
    losing try (attempt, winner, ledger) is discarded with it. Any other
    exception rolls back and propagates unchanged.

    Raises:
        ConcurrentConflictError: When ``max_attempts`` tries all lost the race.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except SlotContentionError as exc:
            await db.rollback()
            logger.info(f"[{label}] lost slot race on try {attempt}/{max_attempts}: {exc}")
        except DBAPIError as exc:
            await db.rollback()
            if not is_transient_db_error(exc):
                raise
            logger.info(f"[{label}] transient storage conflict on try {attempt}/{max_attempts}: {exc.orig}")
        except BaseException:
            await db.rollback()
            raise

        if attempt < max_attempts:
            delay = backoff_ms * attempt * (0.5 + random.random()) / 1000
            await asyncio.sleep(delay)

    logger.warning(f"[{label}] retry budget of {max_attempts} exhausted")
    raise ConcurrentConflictError(f"{label}: retry budget of {max_attempts} exhausted")


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of a slot claim."""

    is_winner: bool
    max_winners: int
    winners_count: int
    position: int | None = None
    winner_id: UUID | None = None
    amount_awarded: int = 0
    reason: str | None = None

    @property
    def remaining_spots(self) -> int:
        return max(self.max_winners - self.winners_count, 0)

    @property
    def is_completed(self) -> bool:
        return self.winners_count >= self.max_winners


class WinnerAllocator:
    """Claims winner slots on instant reward questions."""

    def __init__(self, db: AsyncSession, ledger: PointsLedgerService | None = None):
        self.db = db
        self.ledger = ledger or PointsLedgerService(db)
        self.settings = get_settings()

    async def claim_slot(
        self,
        question_id: UUID,
        user_id: UUID,
        reward_amount: int,
        points_to_credit: int,
        phone_number: str | None = None,
    ) -> AllocationResult:
        """Try once to claim a slot inside the caller's transaction. Does not commit.

        Raises:
            SlotContentionError: The snapshot was taken by a concurrent claim;
                the caller must roll back and try again.
        """
        result = await self.db.execute(
            select(
                RewardQuestion.winners_count,
                RewardQuestion.max_winners,
                RewardQuestion.payment_provider,
                RewardQuestion.phone_number,
            ).where(RewardQuestion.question_id == question_id)
        )
        snapshot = result.one_or_none()
        if snapshot is None:
            raise QuestionNotFoundError(f"Reward question not found: {question_id}")

        if snapshot.winners_count >= snapshot.max_winners:
            if points_to_credit > 0:
                await self.ledger.credit(
                    user_id,
                    points_to_credit,
                    PointsTransactionType.INSTANT_REWARD_CORRECT,
                    reference_id=question_id,
                )
            logger.info(f"No slots left on {question_id} for {user_id}: {snapshot.winners_count}/{snapshot.max_winners}")
            return AllocationResult(
                is_winner=False,
                max_winners=snapshot.max_winners,
                winners_count=snapshot.winners_count,
                reason=FULL,
            )

        position = snapshot.winners_count + 1
        swap = await self.db.execute(
            update(RewardQuestion)
            .where(
                RewardQuestion.question_id == question_id,
                RewardQuestion.winners_count == snapshot.winners_count,
            )
            .values(
                winners_count=position,
                is_completed=position >= snapshot.max_winners,
            )
            .execution_options(synchronize_session=False)
        )
        if swap.rowcount != 1:
            raise SlotContentionError(
                f"winners_count on {question_id} moved past snapshot {snapshot.winners_count}"
            )

        winner = InstantRewardWinner(
            winner_id=uuid.uuid4(),
            question_id=question_id,
            user_id=user_id,
            position=position,
            amount_awarded=reward_amount,
            payment_status=PaymentStatus.PENDING.value,
            payment_provider=snapshot.payment_provider,
            phone_number=phone_number or snapshot.phone_number,
        )
        self.db.add(winner)
        await self.db.flush()

        if points_to_credit > 0:
            await self.ledger.credit(
                user_id,
                points_to_credit,
                PointsTransactionType.INSTANT_REWARD_WIN,
                reference_id=question_id,
            )

        logger.info(
            f"Slot claimed on {question_id}: user={user_id} position={position}/{snapshot.max_winners} "
            f"winner_id={winner.winner_id}"
        )
        return AllocationResult(
            is_winner=True,
            max_winners=snapshot.max_winners,
            winners_count=position,
            position=position,
            winner_id=winner.winner_id,
            amount_awarded=reward_amount,
        )

    async def allocate(
        self,
        question_id: UUID,
        user_id: UUID,
        reward_amount: int,
        points_to_credit: int,
        phone_number: str | None = None,
    ) -> AllocationResult:
        """Claim a slot in its own transaction, retrying lost races up to the configured budget.

        Raises:
            ConcurrentConflictError: If every try lost the race.
        """
        return await run_with_contention_retry(
            self.db,
            lambda: self.claim_slot(question_id, user_id, reward_amount, points_to_credit, phone_number),
            max_attempts=self.settings.allocation_max_attempts,
            backoff_ms=self.settings.allocation_retry_backoff_ms,
            label=f"allocate:{question_id}",
        )
