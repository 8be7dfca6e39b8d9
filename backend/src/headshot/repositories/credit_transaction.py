"""CreditTransaction repository for headshot backend.

Provides append and read access to the credit ledger.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from headshot.models.credit_transaction import CreditTransaction


class CreditTransactionRepository:
    """Repository for CreditTransaction entities.

    Rows are append-only: there are no update or delete methods.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, transaction: CreditTransaction) -> CreditTransaction:
        """Append a ledger row.

        Args:
            transaction: CreditTransaction entity to persist

        Returns:
            Persisted transaction

        Raises:
            sqlalchemy.exc.IntegrityError: If (user_id, reference_id) already exists
        """
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def exists_for_reference(self, user_id: str, reference_id: str) -> bool:
        """Check whether a reference_id was already used by a user.

        Args:
            user_id: Owning user identifier
            reference_id: Idempotency key of a one-time grant

        Returns:
            True if a row with this (user_id, reference_id) exists
        """
        result = await self.session.execute(
            select(CreditTransaction.id)
            .where(CreditTransaction.user_id == user_id)  # type: ignore[arg-type]
            .where(CreditTransaction.reference_id == reference_id)  # type: ignore[arg-type]
            .limit(1)
        )
        return result.first() is not None

    async def list_by_user(self, user_id: str, limit: int = 20) -> list[CreditTransaction]:
        """Retrieve a user's most recent ledger rows.

        Args:
            user_id: Owning user identifier
            limit: Maximum number of rows to return (default: 20)

        Returns:
            List of transactions ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)  # type: ignore[arg-type]
            .order_by(CreditTransaction.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
