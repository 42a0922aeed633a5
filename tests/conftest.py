"""Pytest configuration and fixtures."""

from datetime import UTC, date, datetime, timedelta

import pytest

from entity_trend_engine.models import Category, DailyEntityStat, RawEntityStat

BASE_DATE = date(2024, 3, 1)


def make_raw(
    entity_id: int,
    total_points: float | None,
    *,
    order_count: int | None = 1,
    category: Category = Category.PRODUCT,
    stat_date: date = BASE_DATE,
) -> RawEntityStat:
    """Create a RawEntityStat for testing."""
    return RawEntityStat(
        entity_id=entity_id,
        category=category,
        stat_date=stat_date,
        order_count=order_count,
        total_points=total_points,
    )


def make_stat(
    entity_id: int,
    stat_date: date,
    *,
    total_points: float = 100.0,
    order_count: int = 1,
    rank: int | None = 1,
    streak_days: int | None = 1,
    category: Category = Category.PRODUCT,
    computed: bool = True,
) -> DailyEntityStat:
    """Create a stored-looking DailyEntityStat for testing."""
    return DailyEntityStat(
        entity_id=entity_id,
        category=category,
        stat_date=stat_date,
        order_count=order_count,
        total_points=total_points,
        rank=rank,
        previous_rank=None,
        trend_multiplier=1.0 if computed else None,
        consistency_score=100.0 if computed else None,
        velocity_score=0.0 if computed else None,
        streak_days=streak_days if computed else None,
        market_share_percent=0.0 if computed else None,
        computed_at=datetime(2024, 1, 1, tzinfo=UTC) if computed else None,
    )


def days(start: date, n: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(n)]


@pytest.fixture
def base_date() -> date:
    """First date used by scoring and backfill tests."""
    return BASE_DATE
