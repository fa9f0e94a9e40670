"""Payout dispatcher: pays allocated winners and records the outcome.

Runs strictly after the allocation transaction committed. The provider call
is made with no transaction open; the terminal status is written with a
conditional update (``WHERE payment_status = 'PENDING'``), so a winner
moves out of PENDING at most once no matter how often dispatch runs.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Mapping
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_backend.config import get_settings
from rewards_backend.models.base import PaymentStatus
from rewards_backend.models.winner import InstantRewardWinner
from rewards_backend.services.payment_providers import PaymentProviderClient, PaymentResult
from rewards_backend.utils import mask_phone_number
from rewards_backend.utils.exceptions import (
    PaymentProviderError,
    PaymentTimeoutError,
    WinnerNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutResult:
    winner_id: UUID
    status: str
    reference: str | None = None


def payout_reference(winner: InstantRewardWinner) -> str:
    """Idempotency reference sent to the provider; identical on every retry."""
    return str(winner.winner_id)


class PayoutDispatcher:
    """Dispatches winner payouts to the configured provider."""

    def __init__(self, db: AsyncSession, providers: Mapping[str, PaymentProviderClient]):
        self.db = db
        self.providers = providers
        self.settings = get_settings()

    async def _load_winner(self, winner_id: UUID) -> InstantRewardWinner | None:
        result = await self.db.execute(
            select(InstantRewardWinner)
            .where(InstantRewardWinner.winner_id == winner_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def dispatch(self, winner_id: UUID) -> PayoutResult:
        """
        Pay a winner once and record SUCCESSFUL or FAILED.

        A provider timeout or a provider-reported pending transfer leaves the
        winner PENDING for the reconciliation sweep. Already settled winners
        are returned unchanged without calling the provider.

        Raises:
            WinnerNotFoundError: If the winner does not exist.
        """
        winner = await self._load_winner(winner_id)
        if winner is None:
            raise WinnerNotFoundError(f"Winner not found: {winner_id}")

        if winner.is_settled:
            logger.info(f"Winner {winner_id} already {winner.payment_status}, skipping payout")
            return PayoutResult(winner_id, winner.payment_status, winner.payment_reference)

        provider = self.providers.get(winner.payment_provider or "")
        if provider is None or not winner.phone_number:
            logger.error(
                f"Winner {winner_id} has no usable payout destination: "
                f"provider={winner.payment_provider} phone={mask_phone_number(winner.phone_number)}"
            )
            return await self._finalize(winner_id, PaymentStatus.FAILED)

        # Count the call before making it so a crash mid-call still consumes the budget.
        await self.db.execute(
            update(InstantRewardWinner)
            .where(InstantRewardWinner.winner_id == winner_id)
            .values(payout_attempts=InstantRewardWinner.payout_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        reference = payout_reference(winner)
        logger.info(
            f"Dispatching payout: winner={winner_id} provider={winner.payment_provider} "
            f"amount={winner.amount_awarded} phone={mask_phone_number(winner.phone_number)}"
        )

        try:
            result: PaymentResult = await provider.pay(winner.amount_awarded, winner.phone_number, reference)
        except PaymentTimeoutError as e:
            logger.warning(f"Payout for winner {winner_id} timed out, leaving PENDING: {e}")
            return PayoutResult(winner_id, PaymentStatus.PENDING.value)
        except PaymentProviderError as e:
            logger.error(f"Payout for winner {winner_id} failed: {e}")
            return await self._finalize(winner_id, PaymentStatus.FAILED)
        except Exception as e:
            logger.error(f"Unexpected payout error for winner {winner_id}: {e}", exc_info=True)
            return await self._finalize(winner_id, PaymentStatus.FAILED)

        if result.success:
            return await self._finalize(winner_id, PaymentStatus.SUCCESSFUL, result.reference or reference)
        if result.pending:
            logger.info(f"Payout for winner {winner_id} still pending at provider: {result.detail}")
            return PayoutResult(winner_id, PaymentStatus.PENDING.value)

        logger.warning(f"Provider declined payout for winner {winner_id}: {result.detail}")
        return await self._finalize(winner_id, PaymentStatus.FAILED)

    async def _finalize(
        self,
        winner_id: UUID,
        status: PaymentStatus,
        reference: str | None = None,
    ) -> PayoutResult:
        """Move a PENDING winner to its terminal status; a no-op for settled winners."""
        values = {"payment_status": status.value, "updated_at": datetime.now(UTC)}
        if status == PaymentStatus.SUCCESSFUL:
            values["payment_reference"] = reference
            values["paid_at"] = datetime.now(UTC)

        result = await self.db.execute(
            update(InstantRewardWinner)
            .where(
                InstantRewardWinner.winner_id == winner_id,
                InstantRewardWinner.payment_status == PaymentStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 1:
            logger.info(f"Winner {winner_id} payout {status.value}")
            return PayoutResult(winner_id, status.value, reference)

        # Another dispatcher settled it first; report what is stored.
        winner = await self._load_winner(winner_id)
        logger.info(f"Winner {winner_id} was already settled as {winner.payment_status}")
        return PayoutResult(winner_id, winner.payment_status, winner.payment_reference)

    async def reconcile_pending(
        self,
        older_than_minutes: int | None = None,
        limit: int | None = None,
    ) -> list[PayoutResult]:
        """
        Retry payouts stuck in PENDING past the grace period.

        The same reference is sent again, so a transfer the provider already
        completed is not paid twice. Winners that used up
        ``payout_max_attempts`` are marked FAILED.
        """
        minutes = older_than_minutes if older_than_minutes is not None else self.settings.payout_reconcile_after_minutes
        limit = limit or self.settings.payout_reconcile_batch_size
        cutoff = datetime.now(UTC) - timedelta(minutes=minutes)

        result = await self.db.execute(
            select(InstantRewardWinner.winner_id, InstantRewardWinner.payout_attempts)
            .where(
                InstantRewardWinner.payment_status == PaymentStatus.PENDING.value,
                InstantRewardWinner.created_at <= cutoff,
            )
            .order_by(InstantRewardWinner.created_at.asc())
            .limit(limit)
        )
        stale = result.all()
        if not stale:
            return []

        logger.info(f"Reconciling {len(stale)} pending payouts older than {minutes} minutes")
        outcomes = []
        for winner_id, payout_attempts in stale:
            if payout_attempts >= self.settings.payout_max_attempts:
                logger.warning(f"Winner {winner_id} exhausted {payout_attempts} payout attempts, marking FAILED")
                outcomes.append(await self._finalize(winner_id, PaymentStatus.FAILED))
                continue
            outcomes.append(await self.dispatch(winner_id))
        return outcomes
