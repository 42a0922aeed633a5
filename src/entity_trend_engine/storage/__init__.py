"""Storage layer - database schema, repositories and the stat store."""

from entity_trend_engine.storage.database import (
    DatabaseManager,
    create_async_db_engine,
)
from entity_trend_engine.storage.models import Base, DailyEntityStatModel
from entity_trend_engine.storage.repos import DailyEntityStatRepository
from entity_trend_engine.storage.schema import (
    TREND_SCORING_CHANGES,
    AddColumn,
    CreateIndex,
    SchemaChangeResult,
    SchemaMigrator,
    SchemaRunResult,
    SchemaState,
)
from entity_trend_engine.storage.store import SqlStatStore, StatStore

__all__ = [
    "AddColumn",
    "Base",
    "CreateIndex",
    "DailyEntityStatModel",
    "DailyEntityStatRepository",
    "DatabaseManager",
    "SchemaChangeResult",
    "SchemaMigrator",
    "SchemaRunResult",
    "SchemaState",
    "SqlStatStore",
    "StatStore",
    "TREND_SCORING_CHANGES",
    "create_async_db_engine",
]
