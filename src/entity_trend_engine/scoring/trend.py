"""Trend scoring for a single entity-date.

The scorer is pure: everything it knows about prior days comes from the
history rows handed to it, so it can be re-run at any time and yields the
same result for the same inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import numpy as np

from entity_trend_engine.errors import InsufficientHistoryError
from entity_trend_engine.models import DailyEntityStat, TrendFields

if TYPE_CHECKING:
    from entity_trend_engine.config import TrendSettings

logger = logging.getLogger(__name__)

NEUTRAL_MULTIPLIER = 1.0
MAX_CONSISTENCY = 100.0


@dataclass(frozen=True)
class TrendConfig:
    """Tunable trend constants."""

    cap_steps: int = 10
    step_weight: float = 0.05
    min_multiplier: float = 0.5
    max_multiplier: float = 2.0
    window_days: int = 7
    consistency_epsilon: float = 1e-9

    @classmethod
    def from_settings(cls, settings: TrendSettings) -> TrendConfig:
        return cls(
            cap_steps=settings.cap_steps,
            step_weight=settings.step_weight,
            min_multiplier=settings.min_multiplier,
            max_multiplier=settings.max_multiplier,
            window_days=settings.window_days,
            consistency_epsilon=settings.consistency_epsilon,
        )


def trend_multiplier(
    rank: int | None,
    previous_rank: int | None,
    config: TrendConfig,
) -> float:
    """Bounded multiplier from rank movement; 1.0 when either rank is missing."""
    if rank is None or previous_rank is None:
        return NEUTRAL_MULTIPLIER
    delta = previous_rank - rank
    steps = min(abs(delta), config.cap_steps)
    sign = (delta > 0) - (delta < 0)
    value = NEUTRAL_MULTIPLIER + sign * steps * config.step_weight
    return max(config.min_multiplier, min(config.max_multiplier, value))


def velocity_score(offsets: Sequence[float], points: Sequence[float]) -> float:
    """Least-squares slope of points per day divided by the window mean."""
    if len(points) < 2:
        return 0.0
    y = np.asarray(points, dtype=float)
    mean = float(y.mean())
    if mean == 0.0:
        return 0.0
    slope = float(np.polyfit(np.asarray(offsets, dtype=float), y, 1)[0])
    return slope / mean


def consistency_score(points: Sequence[float], epsilon: float) -> float:
    """Coefficient-of-variation stability score clamped to [0, 100]."""
    if len(points) < 2:
        return MAX_CONSISTENCY
    y = np.asarray(points, dtype=float)
    mean = float(y.mean())
    std = float(y.std())
    ratio = min(1.0, std / (mean + epsilon))
    return max(0.0, min(MAX_CONSISTENCY, MAX_CONSISTENCY * (1.0 - ratio)))


def market_share_percent(total_points: float, rank: int | None, group_total: float) -> float:
    if rank is None or group_total <= 0:
        return 0.0
    return total_points / group_total * 100.0


class TrendScorer:
    """Computes trend-derived fields from today's ranked row and prior rows.

    History is the entity's prior rows in the same category, most recent
    first, restricted to rows whose derived fields are present. Rows dated on
    or after today are ignored so that a recompute of date D never depends on
    later data.
    """

    def __init__(self, config: TrendConfig | None = None) -> None:
        self.config = config or TrendConfig()

    def score(
        self,
        today: DailyEntityStat,
        history: Sequence[DailyEntityStat],
        *,
        group_total: float,
        last_ranked: DailyEntityStat | None = None,
    ) -> TrendFields:
        """Score one entity-date.

        Args:
            today: Today's row with raw inputs and `rank` set (None if inactive).
            history: Prior rows, most recent first.
            group_total: Sum of `total_points` over ranked entities today.
            last_ranked: Most recent prior ranked row found by unbounded
                lookback, used when `history` holds no ranked row.

        Returns:
            TrendFields for today.

        Raises:
            InsufficientHistoryError: If today's order count is missing, or an
                active entity has no point total. An inactive entity without a
                point total scores as zero points.
        """
        if today.order_count is None or (today.order_count > 0 and today.total_points is None):
            raise InsufficientHistoryError(
                f"entity {today.entity_id}: raw inputs missing for {today.stat_date}",
                entity_id=today.entity_id,
            )

        today_points = float(today.total_points or 0.0)
        prior = self._usable_history(today, history)
        previous_rank = self._previous_rank(today, prior, last_ranked)
        multiplier = trend_multiplier(today.rank, previous_rank, self.config)

        window_start = today.stat_date - timedelta(days=self.config.window_days - 1)
        window = [r for r in prior if r.stat_date >= window_start and r.total_points is not None]
        offsets = [float((r.stat_date - today.stat_date).days) for r in reversed(window)]
        points = [float(r.total_points or 0.0) for r in reversed(window)]
        offsets.append(0.0)
        points.append(today_points)

        return TrendFields(
            previous_rank=previous_rank,
            trend_multiplier=multiplier,
            consistency_score=consistency_score(points, self.config.consistency_epsilon),
            velocity_score=velocity_score(offsets, points),
            streak_days=self._streak_days(today, prior, previous_rank),
            market_share_percent=market_share_percent(
                today_points, today.rank, group_total
            ),
        )

    @staticmethod
    def _usable_history(
        today: DailyEntityStat, history: Sequence[DailyEntityStat]
    ) -> list[DailyEntityStat]:
        usable: list[DailyEntityStat] = []
        for row in history:
            if row.stat_date >= today.stat_date:
                logger.warning(
                    "Ignoring history row dated %s for entity %s scored on %s",
                    row.stat_date,
                    today.entity_id,
                    today.stat_date,
                )
                continue
            if row.entity_id != today.entity_id or row.category != today.category:
                continue
            if not row.has_derived_fields:
                continue
            usable.append(row)
        usable.sort(key=lambda r: r.stat_date, reverse=True)
        return usable

    @staticmethod
    def _previous_rank(
        today: DailyEntityStat,
        prior: Sequence[DailyEntityStat],
        last_ranked: DailyEntityStat | None,
    ) -> int | None:
        for row in prior:
            if row.rank is not None:
                return row.rank
        if (
            last_ranked is not None
            and last_ranked.rank is not None
            and last_ranked.stat_date < today.stat_date
            and last_ranked.category == today.category
        ):
            return last_ranked.rank
        return None

    @staticmethod
    def _streak_days(
        today: DailyEntityStat,
        prior: Sequence[DailyEntityStat],
        previous_rank: int | None,
    ) -> int:
        if today.rank is None:
            return 0
        if previous_rank is not None and today.rank > previous_rank:
            return 0
        # Only an unbroken run of calendar days continues a streak.
        if prior and prior[0].stat_date == today.stat_date - timedelta(days=1):
            return (prior[0].streak_days or 0) + 1
        return 1
