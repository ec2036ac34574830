"""Async database engine and session factory construction."""

from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealflow.models.base import Base


def create_engine_and_factory(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine plus a session factory bound to it.

    Args:
        database_url: SQLAlchemy async URL (e.g. "sqlite+aiosqlite:///./dealflow.db")
        echo: Log emitted SQL

    Returns:
        (engine, session_factory)
    """
    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    is_sqlite = database_url.startswith("sqlite")

    engine_kwargs: dict = {"echo": echo}
    if is_sqlite:
        if ":memory:" in database_url or database_url.endswith("sqlite+aiosqlite://"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
    else:
        engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)

    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table known to the ORM metadata if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
