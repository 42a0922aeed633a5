"""Additive schema changes applied exactly once.

Each change is probed against live table metadata before it is applied, so
a change that is already in place is reported as `ALREADY_APPLIED` rather
than surfacing a database error. Any other failure is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, DateTime, Float, Integer, inspect
from sqlalchemy.exc import SQLAlchemyError

from entity_trend_engine.errors import SchemaApplicationError

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlalchemy.types import TypeEngine

logger = logging.getLogger(__name__)

STATS_TABLE = "daily_entity_stats"


class SchemaChangeResult(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class SchemaState(str, Enum):
    """Schema step lifecycle."""

    NOT_APPLIED = "not_applied"
    APPLYING = "applying"
    APPLIED = "applied"


@dataclass(frozen=True)
class AddColumn:
    """Add a nullable column to an existing table."""

    table: str
    column: str
    type_: TypeEngine

    @property
    def name(self) -> str:
        return f"add_column:{self.table}.{self.column}"


@dataclass(frozen=True)
class CreateIndex:
    """Create a non-unique index on an existing table."""

    table: str
    index_name: str
    columns: tuple[str, ...]

    @property
    def name(self) -> str:
        return f"create_index:{self.table}.{self.index_name}"


SchemaChange = AddColumn | CreateIndex

TREND_SCORING_CHANGES: tuple[SchemaChange, ...] = (
    AddColumn(STATS_TABLE, "previous_rank", Integer()),
    AddColumn(STATS_TABLE, "trend_multiplier", Float()),
    AddColumn(STATS_TABLE, "consistency_score", Float()),
    AddColumn(STATS_TABLE, "velocity_score", Float()),
    AddColumn(STATS_TABLE, "streak_days", Integer()),
    AddColumn(STATS_TABLE, "market_share_percent", Float()),
    AddColumn(STATS_TABLE, "computed_at", DateTime(timezone=True)),
    CreateIndex(STATS_TABLE, "idx_daily_entity_stats_streak", ("category", "streak_days")),
)


@dataclass(frozen=True)
class ColumnCheck:
    table: str
    column: str
    present: bool


@dataclass
class SchemaRunResult:
    """Outcome of applying a set of schema changes."""

    state: SchemaState = SchemaState.NOT_APPLIED
    applied: list[str] = field(default_factory=list)
    already_applied: list[str] = field(default_factory=list)
    verification: list[ColumnCheck] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return all(check.present for check in self.verification)

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "applied": list(self.applied),
            "already_applied": list(self.already_applied),
            "verification": [
                {"table": c.table, "column": c.column, "present": c.present}
                for c in self.verification
            ],
        }


def _has_table(conn: Connection, table: str) -> bool:
    return inspect(conn).has_table(table)


def _has_column(conn: Connection, table: str, column: str) -> bool:
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return False
    return any(col["name"] == column for col in inspector.get_columns(table))


def _has_index(conn: Connection, table: str, index_name: str) -> bool:
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return False
    return any(idx["name"] == index_name for idx in inspector.get_indexes(table))


def _is_present(conn: Connection, change: SchemaChange) -> bool:
    if isinstance(change, AddColumn):
        return _has_column(conn, change.table, change.column)
    return _has_index(conn, change.table, change.index_name)


def _apply(conn: Connection, change: SchemaChange) -> None:
    op = Operations(MigrationContext.configure(conn))
    if isinstance(change, AddColumn):
        op.add_column(change.table, Column(change.column, change.type_, nullable=True))
    else:
        op.create_index(change.index_name, change.table, list(change.columns))


class SchemaMigrator:
    """Applies additive schema changes against a live database."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def probe_column(self, table: str, column: str) -> bool:
        async with self.engine.connect() as conn:
            return await conn.run_sync(_has_column, table, column)

    async def apply_change(self, change: SchemaChange) -> SchemaChangeResult:
        """Apply one change unless it is already present.

        Raises:
            SchemaApplicationError: If the target table is missing or the
                change fails and is still absent afterwards.
        """
        try:
            async with self.engine.begin() as conn:
                if not await conn.run_sync(_has_table, change.table):
                    raise SchemaApplicationError(
                        f"{change.name}: table {change.table!r} does not exist",
                        change_name=change.name,
                    )
                if await conn.run_sync(_is_present, change):
                    logger.info("Schema change %s already applied", change.name)
                    return SchemaChangeResult.ALREADY_APPLIED
                await conn.run_sync(_apply, change)
        except SQLAlchemyError as e:
            # A concurrent writer may have applied the same change between probe and apply.
            async with self.engine.connect() as conn:
                if await conn.run_sync(_is_present, change):
                    logger.info("Schema change %s applied concurrently", change.name)
                    return SchemaChangeResult.ALREADY_APPLIED
            raise SchemaApplicationError(f"{change.name}: {e}", change_name=change.name) from e

        logger.info("Schema change %s applied", change.name)
        return SchemaChangeResult.APPLIED
