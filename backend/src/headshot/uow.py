"""Transaction boundary for headshot backend.

One UnitOfWork wraps one session: every repository it exposes writes through
that session, and leaving the ``async with`` block commits or rolls back all
of their changes together.
"""

from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headshot.repositories.credit_account import CreditAccountRepository
from headshot.repositories.credit_transaction import CreditTransactionRepository
from headshot.repositories.generation_job import GenerationJobRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Groups the job and ledger repositories under a single transaction.

    Example:
        async with await uow_factory() as uow:
            await ledger.deduct(uow, user_id, 1, "Headshot generation")
            await uow.generation_jobs.add(job)
        # charge and job row are now committed, or neither is
    """

    def __init__(self, session: AsyncSession):
        """Bind all repositories to ``session``.

        Args:
            session: SQLAlchemy async session owned by this unit of work
        """
        self.session = session

        self.generation_jobs = GenerationJobRepository(session)
        self.credit_accounts = CreditAccountRepository(session)
        self.credit_transactions = CreditTransactionRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on a clean exit, roll back otherwise, then release the session.

        Returns:
            False, so an exception raised inside the block always propagates
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


UnitOfWorkFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWorkFactory:
    """Return an async callable that opens a fresh session per unit of work.

    Args:
        session_factory: SQLAlchemy async session factory

    Example:
        uow_factory = create_uow_factory(setup_db_session(db_url, pool_size=20))

        async with await uow_factory() as uow:
            job = await uow.generation_jobs.get_by_id(job_id)
    """

    async def _open_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _open_uow
