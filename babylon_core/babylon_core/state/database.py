"""Async engine and session helpers for the billing store.

The backend follows the URL scheme:

* ``postgresql+asyncpg://`` gives a pooled engine with per-statement and
  lock timeouts, so a stuck activation cannot hold a profile lock forever.
* ``sqlite+aiosqlite://`` gives the local single-file engine from
  :mod:`babylon_core.state.sqlite_adapter`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    *,
    statement_timeout_ms: int = 30_000,
    lock_timeout_ms: int = 10_000,
) -> AsyncEngine:
    """Create an async engine for *database_url*.

    Parameters
    ----------
    database_url:
        PostgreSQL or SQLite connection string.
    pool_size, max_overflow:
        PostgreSQL pool sizing; ignored for SQLite.
    statement_timeout_ms, lock_timeout_ms:
        PostgreSQL server-side timeouts applied to every connection.
    """
    if database_url.startswith("sqlite"):
        from babylon_core.state.sqlite_adapter import get_local_engine

        _, _, db_path = database_url.partition(":///")
        return get_local_engine(db_path or ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "statement_timeout": str(statement_timeout_ms),
                "lock_timeout": str(lock_timeout_ms),
            }
        },
    )
    logger.info("Created PostgreSQL engine pool_size=%d max_overflow=%d", pool_size, max_overflow)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to *engine*.

    Sessions keep attribute values after commit so services can build
    responses from rows they just committed.  Callers that need one factory
    for the life of the engine keep it next to the engine.
    """
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    session = create_session_factory(engine)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
