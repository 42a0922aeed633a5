"""Tests for the SQL-backed stat store."""

from unittest.mock import patch

import pytest
from conftest import BASE_DATE, make_raw, make_stat
from sqlalchemy.exc import DBAPIError, IntegrityError

from entity_trend_engine.errors import RowPersistenceError, StoreUnavailableError
from entity_trend_engine.models import Category
from entity_trend_engine.storage.database import DatabaseManager, normalize_async_database_url
from entity_trend_engine.storage.schema import SchemaChangeResult, TREND_SCORING_CHANGES
from entity_trend_engine.storage.store import SqlStatStore, is_connectivity_error

pytest.importorskip("aiosqlite", exc_type=ImportError)


@pytest.fixture
async def db_manager(tmp_path):
    db = DatabaseManager(f"sqlite:///{tmp_path / 'store.db'}")
    await db.init_schema_async()
    yield db
    await db.dispose_async()


@pytest.fixture
def store(db_manager: DatabaseManager) -> SqlStatStore:
    return SqlStatStore(db_manager)


def test_normalize_async_database_url() -> None:
    assert normalize_async_database_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert normalize_async_database_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert normalize_async_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


class TestSqlStatStore:
    @pytest.mark.asyncio
    async def test_row_round_trip(self, store: SqlStatStore) -> None:
        await store.upsert_raw(make_raw(1, 12.0, stat_date=BASE_DATE))
        await store.upsert_row(make_stat(2, BASE_DATE, rank=1))

        rows = await store.list_rows(Category.PRODUCT, BASE_DATE)
        row = await store.get_row(2, Category.PRODUCT, BASE_DATE)

        assert [r.entity_id for r in rows] == [1, 2]
        assert row is not None and row.rank == 1

    @pytest.mark.asyncio
    async def test_schema_changes_already_applied_on_full_table(self, store: SqlStatStore) -> None:
        results = [await store.apply_schema_change(c) for c in TREND_SCORING_CHANGES]

        assert all(r is SchemaChangeResult.ALREADY_APPLIED for r in results)
        assert await store.probe_column("daily_entity_stats", "market_share_percent")

    @pytest.mark.asyncio
    async def test_upsert_failure_becomes_row_persistence_error(self, store: SqlStatStore) -> None:
        row = make_stat(3, BASE_DATE)
        with patch(
            "entity_trend_engine.storage.store.DailyEntityStatRepository.upsert",
            side_effect=IntegrityError("INSERT", {}, Exception("constraint failed")),
        ):
            with pytest.raises(RowPersistenceError) as exc:
                await store.upsert_row(row)

        assert exc.value.entity_id == 3
        assert exc.value.stat_date == BASE_DATE

    @pytest.mark.asyncio
    async def test_connection_loss_becomes_store_unavailable(self, store: SqlStatStore) -> None:
        lost = DBAPIError("SELECT", {}, Exception("server closed the connection"), connection_invalidated=True)
        with patch(
            "entity_trend_engine.storage.store.DailyEntityStatRepository.get",
            side_effect=lost,
        ):
            with pytest.raises(StoreUnavailableError):
                await store.get_row(1, Category.PRODUCT, BASE_DATE)


def test_is_connectivity_error() -> None:
    assert is_connectivity_error(ConnectionRefusedError())
    assert is_connectivity_error(
        DBAPIError("SELECT", {}, Exception("gone"), connection_invalidated=True)
    )
    assert not is_connectivity_error(IntegrityError("INSERT", {}, Exception("dup")))
