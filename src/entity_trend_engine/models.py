"""Domain models for daily entity stats."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo


class Category(str, Enum):
    """Closed set of competing entity categories.

    Derived computations never mix rows from different categories.
    """

    MANUFACTURER = "manufacturer"
    CANNABIS_STRAIN = "cannabis_strain"
    PRODUCT = "product"
    PHARMACY = "pharmacy"
    BRAND = "brand"

    @classmethod
    def parse(cls, value: str | Category) -> Category:
        """Parse a category name, accepting `strain` as shorthand."""
        if isinstance(value, Category):
            return value
        normalized = value.strip().lower().replace("-", "_")
        if normalized == "strain":
            normalized = cls.CANNABIS_STRAIN.value
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown category {value!r} (expected one of: {valid})") from None


def normalize_stat_date(value: date | datetime, tz: ZoneInfo | None = None) -> date:
    """Convert a timestamp into the engine's day granularity.

    Naive datetimes are treated as UTC. Plain dates pass through unchanged.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(tz or UTC).date()
    return value


@dataclass(frozen=True)
class RawEntityStat:
    """Raw per-day activity counters for one entity, as supplied upstream."""

    entity_id: int
    category: Category
    stat_date: date
    order_count: int | None
    total_points: float | None

    @property
    def is_active(self) -> bool:
        return self.order_count is not None and self.order_count > 0

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        category: Category,
        stat_date: date,
    ) -> RawEntityStat:
        """Create a RawEntityStat from a feed record.

        Accepts both camelCase (`entityId`, `orderCount`, `totalPoints`) and
        snake_case keys.
        """
        entity_id = data.get("entityId", data.get("entity_id"))
        if entity_id is None:
            raise ValueError("raw stat record is missing entityId")
        order_count = data.get("orderCount", data.get("order_count"))
        total_points = data.get("totalPoints", data.get("total_points"))
        return cls(
            entity_id=int(entity_id),
            category=category,
            stat_date=stat_date,
            order_count=int(order_count) if order_count is not None else None,
            total_points=float(total_points) if total_points is not None else None,
        )


@dataclass(frozen=True)
class TrendFields:
    """Trend-derived fields computed for one entity-date."""

    previous_rank: int | None
    trend_multiplier: float
    consistency_score: float
    velocity_score: float
    streak_days: int
    market_share_percent: float


@dataclass(frozen=True)
class DailyEntityStat:
    """One row per (entity, category, date): raw inputs plus derived fields.

    `computed_at` marks whether the derived fields have been populated; a row
    with `computed_at is None` is treated as having no derived fields.
    """

    entity_id: int
    category: Category
    stat_date: date
    order_count: int | None
    total_points: float | None
    rank: int | None = None
    previous_rank: int | None = None
    trend_multiplier: float | None = None
    consistency_score: float | None = None
    velocity_score: float | None = None
    streak_days: int | None = None
    market_share_percent: float | None = None
    computed_at: datetime | None = None

    @property
    def has_derived_fields(self) -> bool:
        return self.computed_at is not None

    @classmethod
    def from_raw(cls, raw: RawEntityStat, *, rank: int | None = None) -> DailyEntityStat:
        return cls(
            entity_id=raw.entity_id,
            category=raw.category,
            stat_date=raw.stat_date,
            order_count=raw.order_count,
            total_points=raw.total_points,
            rank=rank,
        )

    def to_raw(self) -> RawEntityStat:
        return RawEntityStat(
            entity_id=self.entity_id,
            category=self.category,
            stat_date=self.stat_date,
            order_count=self.order_count,
            total_points=self.total_points,
        )

    def with_trend(self, trend: TrendFields, *, computed_at: datetime) -> DailyEntityStat:
        """Return a copy with the derived fields populated."""
        return dataclasses.replace(
            self,
            previous_rank=trend.previous_rank,
            trend_multiplier=trend.trend_multiplier,
            consistency_score=trend.consistency_score,
            velocity_score=trend.velocity_score,
            streak_days=trend.streak_days,
            market_share_percent=trend.market_share_percent,
            computed_at=computed_at,
        )

    def derived_fields(self) -> tuple[Any, ...]:
        """Derived values used for idempotence comparisons (excludes timestamps)."""
        return (
            self.rank,
            self.previous_rank,
            self.trend_multiplier,
            self.consistency_score,
            self.velocity_score,
            self.streak_days,
            self.market_share_percent,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityId": self.entity_id,
            "category": self.category.value,
            "statDate": self.stat_date.isoformat(),
            "orderCount": self.order_count,
            "totalPoints": self.total_points,
            "rank": self.rank,
            "previousRank": self.previous_rank,
            "trendMultiplier": self.trend_multiplier,
            "consistencyScore": self.consistency_score,
            "velocityScore": self.velocity_score,
            "streakDays": self.streak_days,
            "marketSharePercent": self.market_share_percent,
            "computedAt": self.computed_at.isoformat() if self.computed_at else None,
        }
