"""SQLite backend for local and test runs.

Uses the same ORM tables as PostgreSQL so every repository code path runs
unchanged.  Differences from the PostgreSQL backend:

* ``SELECT ... FOR UPDATE`` is not emitted; SQLite has a single writer,
  which already serialises license activations.
* Concurrent webhook deliveries wait on the write lock for up to
  ``busy_timeout_ms`` instead of failing immediately.
* Tables are created on startup rather than by migrations.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def get_local_engine(
    db_path: Path | str = ".babylon/billing.db",
    *,
    busy_timeout_ms: int = 5_000,
) -> AsyncEngine:
    """Create an aiosqlite engine for *db_path*.

    Parameters
    ----------
    db_path:
        Database file; missing parent directories are created.  ``:memory:``
        gives an ephemeral database.
    busy_timeout_ms:
        How long a writer waits for the database lock.
    """
    if str(db_path) == MEMORY:
        url = f"sqlite+aiosqlite:///{MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        for pragma in (
            "journal_mode=WAL",
            "foreign_keys=ON",
            "synchronous=NORMAL",
            f"busy_timeout={int(busy_timeout_ms)}",
        ):
            cursor.execute(f"PRAGMA {pragma}")
        cursor.close()

    logger.info("Created SQLite engine: %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create every billing table that does not exist yet."""
    from babylon_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Billing tables created/verified")
