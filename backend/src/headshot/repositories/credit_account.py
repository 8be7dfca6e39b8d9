"""CreditAccount repository for headshot backend.

Balance mutations are single SQL statements so concurrent requests for the
same user cannot interleave between the balance check and the write.
"""

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from headshot.core.timezone import utcnow
from headshot.models.credit_account import CreditAccount


class CreditAccountRepository:
    """Repository for CreditAccount entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_user_id(self, user_id: str) -> CreditAccount | None:
        """Retrieve the credit account for a user, reloading any cached instance.

        Args:
            user_id: Owning user identifier

        Returns:
            CreditAccount if the account exists, None otherwise
        """
        result = await self.session.execute(
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def credit(self, user_id: str, amount: int) -> None:
        """Add amount to balance and total_earned, creating the account at zero if absent.

        Uses INSERT ... ON CONFLICT (user_id) DO UPDATE so the first grant
        and concurrent grants never race on account creation.

        Args:
            user_id: Owning user identifier
            amount: Positive number of credits
        """
        now = utcnow()
        stmt = insert(CreditAccount).values(
            user_id=user_id,
            balance=amount,
            total_earned=amount,
            total_spent=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "balance": CreditAccount.balance + amount,
                "total_earned": CreditAccount.total_earned + amount,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)

    async def debit_if_sufficient(self, user_id: str, amount: int) -> bool:
        """Atomically subtract amount from balance if balance >= amount.

        Query:
            UPDATE credit_accounts
            SET balance = balance - :amount, total_spent = total_spent + :amount
            WHERE user_id = :user_id AND balance >= :amount

        Args:
            user_id: Owning user identifier
            amount: Positive number of credits

        Returns:
            True if the debit was applied, False if the account is missing or
            the balance is insufficient
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)  # type: ignore[arg-type]
            .where(CreditAccount.balance >= amount)  # type: ignore[arg-type]
            .values(
                balance=CreditAccount.balance - amount,
                total_spent=CreditAccount.total_spent + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
