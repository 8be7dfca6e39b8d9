"""Async engine and session factory construction."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Open a pooled engine for ``db_url`` and return its session factory.

    Args:
        db_url: SQLAlchemy async URL, normally postgresql+psycopg://...
        pool_size: Fixed pool size; requests beyond it wait for a free connection

    Returns:
        Session factory bound to the new engine
    """
    engine = create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,
        pool_pre_ping=True,
    )
    return create_session_factory(engine)


def create_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Wrap an async engine in a session factory.

    Sessions keep their objects loaded after commit so detached reads work
    in background tasks.
    """
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
