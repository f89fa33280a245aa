"""
Database Connection Module

Handles the relational store connection using the SQLAlchemy async engine.

The core never touches a module-level session: every operation receives
an explicit ``AsyncSession`` and runs inside exactly one ``atomic()``
block on it, so the store's row locks and commit/rollback are the only
source of ordering between concurrent requests.
"""

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pos_core.core.config import get_settings

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the async engine from settings (once)."""
    settings = get_settings()
    kwargs = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    return create_async_engine(settings.database_url, **kwargs)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the configured engine."""
    return make_session_maker(get_engine())


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory for ``engine``.

    Objects stay readable after commit so services can return the rows
    they just wrote.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with get_session_maker()() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one transaction on ``session``.

    Commits when the block finishes, rolls back and re-raises on any
    exception. The session must not already be inside a transaction.
    """
    async with session.begin():
        try:
            yield session
        except Exception as e:
            logger.debug(f"Rolling back transaction: {e!r}")
            raise


def lock_statement(model, pk):
    """
    SELECT ... FOR UPDATE of one row by primary key.

    ``populate_existing`` refreshes an instance already in the identity map
    with the locked values.
    """
    return (
        select(model)
        .where(model.id == pk)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def get_for_update(session: AsyncSession, model, pk):
    """
    Load one row by primary key holding a row lock.

    The lock lasts until the enclosing transaction ends.
    """
    result = await session.execute(lock_statement(model, pk))
    return result.scalar_one_or_none()


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Model classes must be registered on Base.metadata before create_all
    import pos_core.models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
