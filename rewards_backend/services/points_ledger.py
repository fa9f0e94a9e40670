"""Points ledger service for atomic balance credits."""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from uuid import UUID
import uuid
import logging

from rewards_backend.models.base import PointsTransactionType
from rewards_backend.models.points_transaction import PointsTransaction
from rewards_backend.models.user import UserAccount
from rewards_backend.utils.exceptions import UserNotFoundError

logger = logging.getLogger(__name__)


class PointsLedgerService:
    """Service for crediting user points balances."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def credit(
        self,
        user_id: UUID,
        amount: int,
        trans_type: PointsTransactionType | str,
        reference_id: UUID | None = None,
        auto_commit: bool = False,
    ) -> PointsTransaction:
        """
        Credit points to a user and append a ledger row.

        The balance is incremented in SQL (``points = points + amount``) so
        concurrent credits never overwrite each other; no row lock or
        application lock is taken.

        Args:
            user_id: UserAccount UUID
            amount: Points to add (must be positive)
            trans_type: Ledger entry type
            reference_id: Optional reference to the question being settled
            auto_commit: If True, commits immediately. If False, caller owns the transaction.

        Returns:
            Created ledger row

        Raises:
            ValueError: If amount is not positive
            UserNotFoundError: If the user does not exist
        """
        if amount <= 0:
            raise ValueError(f"Points credit must be positive, got {amount}")

        trans_type = PointsTransactionType(trans_type).value

        result = await self.db.execute(
            update(UserAccount)
            .where(UserAccount.user_id == user_id)
            .values(points=UserAccount.points + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise UserNotFoundError(f"User not found: {user_id}")

        balance_after = await self.get_balance(user_id)

        transaction = PointsTransaction(
            transaction_id=uuid.uuid4(),
            user_id=user_id,
            amount=amount,
            type=trans_type,
            reference_id=reference_id,
            balance_after=balance_after,
        )
        self.db.add(transaction)
        await self.db.flush()

        if auto_commit:
            await self.db.commit()

        logger.info(
            f"Points credited: user={user_id}, amount={amount}, type={trans_type}, "
            f"balance_after={balance_after}, auto_commit={auto_commit}"
        )
        return transaction

    async def get_balance(self, user_id: UUID) -> int:
        """Current points balance, read straight from the database."""
        result = await self.db.execute(
            select(UserAccount.points).where(UserAccount.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        return balance
