"""Async engine and session management for the stat store.

PostgreSQL (asyncpg) is the production backend; SQLite (aiosqlite) is
supported for local runs and tests.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from entity_trend_engine.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 30


def normalize_async_database_url(database_url: str) -> str:
    """Map sync driver URLs onto their async drivers."""
    if database_url.startswith("postgresql://"):
        logger.warning(
            "Database URL uses sync dialect 'postgresql://'; using async driver 'postgresql+asyncpg://'."
        )
        return "postgresql+asyncpg://" + database_url[len("postgresql://") :]
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url[len("sqlite://") :]
    return database_url


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def create_async_db_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine for PostgreSQL or SQLite.

    Pool sizing only applies to PostgreSQL. SQLite connections get a busy
    timeout so concurrent row writers queue on the file lock.
    """
    url = normalize_async_database_url(database_url)
    options: dict[str, Any] = {"echo": echo}
    if is_sqlite_url(url):
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return create_async_engine(url, **options)


class DatabaseManager:
    """Owns the async engine and hands out one short session per unit of work.

    Example:
        ```python
        db = DatabaseManager(settings.database.url)
        async with db.get_async_session() as session:
            row = await DailyEntityStatRepository(session).get(42, Category.BRAND, day)
        await db.dispose_async()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """The engine, created on first use."""
        if self._engine is None:
            self._engine = create_async_db_engine(
                self.database_url,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                echo=self._echo,
            )
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on clean exit and rolls back on error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)

        session = self._sessions()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Create every table in its current shape (local runs and tests).

        Production databases are migrated with alembic instead.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Stat store schema created from models")

    async def dispose_async(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None
        logger.debug("Stat store connections disposed")
