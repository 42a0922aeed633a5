"""Fantasy-points breakdown for a scored entity-date."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from entity_trend_engine.models import Category, DailyEntityStat

ORDER_POINT_WEIGHTS: dict[Category, float] = {
    Category.MANUFACTURER: 5.0,
    Category.CANNABIS_STRAIN: 4.5,
    Category.PRODUCT: 4.0,
    Category.PHARMACY: 5.0,
    Category.BRAND: 5.0,
}

MOMENTUM_POINT_WEIGHTS: dict[Category, float] = {
    Category.MANUFACTURER: 25.0,
    Category.CANNABIS_STRAIN: 22.0,
    Category.PRODUCT: 20.0,
    Category.PHARMACY: 25.0,
    Category.BRAND: 25.0,
}

# (minimum streak days, tier name, multiplier), highest first
STREAK_TIERS: tuple[tuple[int, str, float], ...] = (
    (21, "God Mode", 3.0),
    (14, "Legendary", 2.0),
    (7, "Unstoppable", 1.5),
    (4, "On Fire", 1.25),
    (2, "Hot Streak", 1.1),
)

# (minimum market share percent, bonus points), highest first
MARKET_SHARE_BONUSES: tuple[tuple[float, int], ...] = (
    (15.0, 20),
    (8.0, 15),
    (4.0, 10),
    (2.0, 5),
)


@dataclass(frozen=True)
class StreakTier:
    name: str
    multiplier: float


def streak_tier(streak_days: int | None) -> StreakTier:
    days = streak_days or 0
    for minimum, name, multiplier in STREAK_TIERS:
        if days >= minimum:
            return StreakTier(name=name, multiplier=multiplier)
    return StreakTier(name="No Streak", multiplier=1.0)


def rank_bonus_points(rank: int | None) -> int:
    if rank is None:
        return 0
    if rank == 1:
        return 30
    if rank <= 3:
        return 20
    if rank <= 5:
        return 15
    if rank <= 10:
        return 10
    return 0


def momentum_bonus_points(rank: int | None, previous_rank: int | None) -> int:
    """+8 per rank gained (max +40), -4 per rank lost (max -40)."""
    if rank is None or previous_rank is None:
        return 0
    change = previous_rank - rank
    if change > 0:
        return min(40, change * 8)
    if change < 0:
        return max(-40, change * 4)
    return 0


def consistency_bonus_points(consistency: float | None) -> int:
    if consistency is None:
        return 0
    return min(20, math.floor(consistency * 0.2))


def velocity_bonus_points(velocity: float | None) -> int:
    # velocity is a per-day fraction of the window mean; scale to percent
    if velocity is None:
        return 0
    return min(15, math.floor(abs(velocity) * 100.0 * 0.15))


def streak_bonus_points(streak_days: int | None) -> int:
    days = streak_days or 0
    if days < 2:
        return 0
    return min(15, days * 2)


def market_share_bonus_points(share_percent: float | None) -> int:
    if share_percent is None:
        return 0
    for minimum, bonus in MARKET_SHARE_BONUSES:
        if share_percent >= minimum:
            return bonus
    return 0


@dataclass(frozen=True)
class PointsBreakdown:
    """Fantasy-points components for one entity-date."""

    order_count_points: int
    trend_momentum_points: int
    rank_bonus_points: int
    momentum_bonus_points: int
    consistency_bonus_points: int
    velocity_bonus_points: int
    streak_bonus_points: int
    market_share_bonus_points: int
    streak_tier: str
    streak_multiplier: float

    @property
    def total_fantasy_points(self) -> int:
        return (
            self.order_count_points
            + self.trend_momentum_points
            + self.rank_bonus_points
            + self.momentum_bonus_points
            + self.consistency_bonus_points
            + self.velocity_bonus_points
            + self.streak_bonus_points
            + self.market_share_bonus_points
        )

    def to_dict(self) -> dict[str, int | float | str]:
        data: dict[str, int | float | str] = asdict(self)
        data["total_fantasy_points"] = self.total_fantasy_points
        return data


def compute_breakdown(row: DailyEntityStat) -> PointsBreakdown:
    """Compute the points breakdown from a row's raw and derived fields."""
    multiplier = row.trend_multiplier if row.trend_multiplier is not None else 1.0
    tier = streak_tier(row.streak_days)
    return PointsBreakdown(
        order_count_points=math.floor((row.order_count or 0) * ORDER_POINT_WEIGHTS[row.category]),
        trend_momentum_points=math.floor(multiplier * MOMENTUM_POINT_WEIGHTS[row.category]),
        rank_bonus_points=rank_bonus_points(row.rank),
        momentum_bonus_points=momentum_bonus_points(row.rank, row.previous_rank),
        consistency_bonus_points=consistency_bonus_points(row.consistency_score),
        velocity_bonus_points=velocity_bonus_points(row.velocity_score),
        streak_bonus_points=streak_bonus_points(row.streak_days),
        market_share_bonus_points=market_share_bonus_points(row.market_share_percent),
        streak_tier=tier.name,
        streak_multiplier=tier.multiplier,
    )
