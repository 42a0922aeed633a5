"""Persistent stat store used by the backfill orchestrator.

`SqlStatStore` opens one short session per operation, so every row upsert
is its own transaction. Connection-level failures surface as
`StoreUnavailableError`; any other database failure surfaces as
`RowPersistenceError`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError

from entity_trend_engine.errors import RowPersistenceError, StoreUnavailableError
from entity_trend_engine.models import Category, DailyEntityStat, RawEntityStat
from entity_trend_engine.storage.repos import DailyEntityStatRepository
from entity_trend_engine.storage.schema import SchemaChange, SchemaChangeResult, SchemaMigrator

if TYPE_CHECKING:
    from entity_trend_engine.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class StatStore(Protocol):
    async def get_row(self, entity_id: int, category: Category, stat_date: date) -> DailyEntityStat | None: ...

    async def get_history(
        self, entity_id: int, category: Category, before_date: date, window_size: int
    ) -> list[DailyEntityStat]: ...

    async def get_latest_ranked(
        self, entity_id: int, category: Category, before_date: date
    ) -> DailyEntityStat | None: ...

    async def list_rows(self, category: Category, stat_date: date) -> list[DailyEntityStat]: ...

    async def first_unprocessed_date(self, category: Category, start: date, end: date) -> date | None: ...

    async def upsert_row(self, row: DailyEntityStat) -> None: ...

    async def apply_schema_change(self, change: SchemaChange) -> SchemaChangeResult: ...

    async def probe_column(self, table: str, column: str) -> bool: ...


def is_connectivity_error(exc: BaseException) -> bool:
    if isinstance(exc, (DisconnectionError, OSError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc.__cause__, OSError)


class SqlStatStore:
    """StatStore backed by SQLAlchemy sessions from a DatabaseManager."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db
        self.migrator = SchemaMigrator(db.engine)

    @asynccontextmanager
    async def _repo(self) -> AsyncIterator[DailyEntityStatRepository]:
        try:
            async with self.db.get_async_session() as session:
                yield DailyEntityStatRepository(session)
        except (SQLAlchemyError, OSError) as e:
            if is_connectivity_error(e):
                raise StoreUnavailableError(f"stat store unavailable: {e}") from e
            raise RowPersistenceError(f"stat store operation failed: {e}") from e

    async def get_row(self, entity_id: int, category: Category, stat_date: date) -> DailyEntityStat | None:
        async with self._repo() as repo:
            return await repo.get(entity_id, category, stat_date)

    async def get_history(
        self, entity_id: int, category: Category, before_date: date, window_size: int
    ) -> list[DailyEntityStat]:
        async with self._repo() as repo:
            return await repo.get_history(entity_id, category, before_date, window_size)

    async def get_latest_ranked(
        self, entity_id: int, category: Category, before_date: date
    ) -> DailyEntityStat | None:
        async with self._repo() as repo:
            return await repo.get_latest_ranked(entity_id, category, before_date)

    async def list_rows(self, category: Category, stat_date: date) -> list[DailyEntityStat]:
        async with self._repo() as repo:
            return await repo.list_for_date(category, stat_date)

    async def first_unprocessed_date(self, category: Category, start: date, end: date) -> date | None:
        async with self._repo() as repo:
            return await repo.first_unprocessed_date(category, start, end)

    async def upsert_row(self, row: DailyEntityStat) -> None:
        """Write one row atomically.

        Raises:
            StoreUnavailableError: On connection loss.
            RowPersistenceError: On any other database failure for this row.
        """
        try:
            async with self._repo() as repo:
                await repo.upsert(row)
        except RowPersistenceError as e:
            raise RowPersistenceError(
                f"failed to upsert entity {row.entity_id} ({row.category.value}) on {row.stat_date}: {e}",
                entity_id=row.entity_id,
                stat_date=row.stat_date,
            ) from e

    async def upsert_raw(self, raw: RawEntityStat) -> None:
        async with self._repo() as repo:
            await repo.upsert_raw(raw)

    async def apply_schema_change(self, change: SchemaChange) -> SchemaChangeResult:
        return await self.migrator.apply_change(change)

    async def probe_column(self, table: str, column: str) -> bool:
        return await self.migrator.probe_column(table, column)
