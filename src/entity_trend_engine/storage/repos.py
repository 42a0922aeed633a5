"""Repository for daily entity stat rows."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from entity_trend_engine.models import Category, DailyEntityStat, RawEntityStat
from entity_trend_engine.storage.models import DailyEntityStatModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

RAW_COLUMNS = ("order_count", "total_points")
DERIVED_COLUMNS = (
    "rank",
    "previous_rank",
    "trend_multiplier",
    "consistency_score",
    "velocity_score",
    "streak_days",
    "market_share_percent",
    "computed_at",
)
KEY_COLUMNS = ["entity_id", "category", "stat_date"]

# Rows that pass raw validation; anything else is skipped by every run and
# never receives derived fields.
SCORABLE_RAW = and_(
    DailyEntityStatModel.order_count >= 0,
    or_(DailyEntityStatModel.total_points.is_(None), DailyEntityStatModel.total_points >= 0),
    or_(DailyEntityStatModel.order_count == 0, DailyEntityStatModel.total_points.is_not(None)),
)


def stat_from_model(model: DailyEntityStatModel) -> DailyEntityStat:
    computed_at = model.computed_at
    # SQLite drops tzinfo on round-trip.
    if computed_at is not None and computed_at.tzinfo is None:
        computed_at = computed_at.replace(tzinfo=UTC)
    return DailyEntityStat(
        entity_id=model.entity_id,
        category=Category(model.category),
        stat_date=model.stat_date,
        order_count=model.order_count,
        total_points=model.total_points,
        rank=model.rank,
        previous_rank=model.previous_rank,
        trend_multiplier=model.trend_multiplier,
        consistency_score=model.consistency_score,
        velocity_score=model.velocity_score,
        streak_days=model.streak_days,
        market_share_percent=model.market_share_percent,
        computed_at=computed_at,
    )


class DailyEntityStatRepository:
    """Repository for daily entity stat data access."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get(self, entity_id: int, category: Category, stat_date: date) -> DailyEntityStat | None:
        result = await self.session.execute(
            select(DailyEntityStatModel).where(
                (DailyEntityStatModel.entity_id == entity_id)
                & (DailyEntityStatModel.category == category.value)
                & (DailyEntityStatModel.stat_date == stat_date)
            )
        )
        model = result.scalar_one_or_none()
        return stat_from_model(model) if model else None

    async def get_history(
        self,
        entity_id: int,
        category: Category,
        before_date: date,
        window_size: int,
    ) -> list[DailyEntityStat]:
        """Get prior computed rows, most recent first.

        Only rows strictly before `before_date` whose derived fields are
        present are returned.
        """
        result = await self.session.execute(
            select(DailyEntityStatModel)
            .where(
                (DailyEntityStatModel.entity_id == entity_id)
                & (DailyEntityStatModel.category == category.value)
                & (DailyEntityStatModel.stat_date < before_date)
                & (DailyEntityStatModel.computed_at.is_not(None))
            )
            .order_by(DailyEntityStatModel.stat_date.desc())
            .limit(window_size)
        )
        return [stat_from_model(m) for m in result.scalars().all()]

    async def get_latest_ranked(
        self, entity_id: int, category: Category, before_date: date
    ) -> DailyEntityStat | None:
        """Get the most recent prior computed row that carries a rank."""
        result = await self.session.execute(
            select(DailyEntityStatModel)
            .where(
                (DailyEntityStatModel.entity_id == entity_id)
                & (DailyEntityStatModel.category == category.value)
                & (DailyEntityStatModel.stat_date < before_date)
                & (DailyEntityStatModel.computed_at.is_not(None))
                & (DailyEntityStatModel.rank.is_not(None))
            )
            .order_by(DailyEntityStatModel.stat_date.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return stat_from_model(model) if model else None

    async def list_for_date(self, category: Category, stat_date: date) -> list[DailyEntityStat]:
        result = await self.session.execute(
            select(DailyEntityStatModel)
            .where(
                (DailyEntityStatModel.category == category.value)
                & (DailyEntityStatModel.stat_date == stat_date)
            )
            .order_by(DailyEntityStatModel.entity_id.asc())
        )
        return [stat_from_model(m) for m in result.scalars().all()]

    async def first_unprocessed_date(self, category: Category, start: date, end: date) -> date | None:
        """Earliest date in [start, end] holding a scorable row without derived fields."""
        result = await self.session.execute(
            select(func.min(DailyEntityStatModel.stat_date)).where(
                (DailyEntityStatModel.category == category.value)
                & (DailyEntityStatModel.stat_date >= start)
                & (DailyEntityStatModel.stat_date <= end)
                & (DailyEntityStatModel.computed_at.is_(None))
                & SCORABLE_RAW
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, stat: DailyEntityStat) -> DailyEntityStat:
        """Upsert raw and derived fields for one row (keyed by entity, category, date)."""
        values: dict[str, Any] = {
            "entity_id": stat.entity_id,
            "category": stat.category.value,
            "stat_date": stat.stat_date,
            "order_count": stat.order_count,
            "total_points": stat.total_points,
            "rank": stat.rank,
            "previous_rank": stat.previous_rank,
            "trend_multiplier": stat.trend_multiplier,
            "consistency_score": stat.consistency_score,
            "velocity_score": stat.velocity_score,
            "streak_days": stat.streak_days,
            "market_share_percent": stat.market_share_percent,
            "computed_at": stat.computed_at,
        }
        await self._upsert(values, update_columns=RAW_COLUMNS + DERIVED_COLUMNS)
        return stat

    async def upsert_raw(self, raw: RawEntityStat) -> RawEntityStat:
        """Upsert only the raw counters, leaving derived fields untouched."""
        values: dict[str, Any] = {
            "entity_id": raw.entity_id,
            "category": raw.category.value,
            "stat_date": raw.stat_date,
            "order_count": raw.order_count,
            "total_points": raw.total_points,
        }
        await self._upsert(values, update_columns=RAW_COLUMNS)
        return raw

    async def _upsert(self, values: dict[str, Any], *, update_columns: tuple[str, ...]) -> None:
        now = datetime.now(UTC)
        bind = self.session.get_bind()
        if bind.dialect.name == "postgresql":
            stmt = pg_insert(DailyEntityStatModel).values(**values, created_at=now, updated_at=now)
        else:
            stmt = sqlite_insert(DailyEntityStatModel).values(**values, created_at=now, updated_at=now)
        set_ = {col: stmt.excluded[col] for col in update_columns}
        set_["updated_at"] = now
        stmt = stmt.on_conflict_do_update(index_elements=KEY_COLUMNS, set_=set_)
        await self.session.execute(stmt)
        await self.session.flush()
