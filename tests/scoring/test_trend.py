"""Tests for the trend scorer."""

from datetime import UTC, date, datetime, timedelta

import pytest
from conftest import make_stat

from entity_trend_engine.errors import InsufficientHistoryError
from entity_trend_engine.models import Category, DailyEntityStat
from entity_trend_engine.scoring.trend import (
    TrendConfig,
    TrendScorer,
    consistency_score,
    market_share_percent,
    trend_multiplier,
    velocity_score,
)

COMPUTED_AT = datetime(2024, 6, 1, tzinfo=UTC)


@pytest.fixture
def scorer() -> TrendScorer:
    return TrendScorer(TrendConfig())


def today_row(
    stat_date: date,
    *,
    rank: int | None,
    total_points: float | None = 100.0,
    order_count: int | None = 1,
    entity_id: int = 1,
) -> DailyEntityStat:
    return DailyEntityStat(
        entity_id=entity_id,
        category=Category.PRODUCT,
        stat_date=stat_date,
        order_count=order_count,
        total_points=total_points,
        rank=rank,
    )


def run_days(
    scorer: TrendScorer,
    start: date,
    ranks: list[int | None],
    points: list[float] | None = None,
) -> list[DailyEntityStat]:
    """Score consecutive days, feeding each result back as history."""
    history: list[DailyEntityStat] = []
    for offset, rank in enumerate(ranks):
        day = start + timedelta(days=offset)
        total = points[offset] if points else 100.0
        today = today_row(day, rank=rank, total_points=total)
        trend = scorer.score(today, list(reversed(history)), group_total=1000.0)
        history.append(today.with_trend(trend, computed_at=COMPUTED_AT))
    return history


# ============================================================================
# Trend multiplier
# ============================================================================


class TestTrendMultiplier:
    def test_five_rank_improvement(self) -> None:
        assert trend_multiplier(5, 10, TrendConfig()) == pytest.approx(1.25)

    def test_rank_drop_lowers_multiplier(self) -> None:
        assert trend_multiplier(8, 5, TrendConfig()) == pytest.approx(0.85)

    def test_steps_are_capped(self) -> None:
        assert trend_multiplier(1, 50, TrendConfig()) == pytest.approx(1.5)
        assert trend_multiplier(50, 1, TrendConfig()) == pytest.approx(0.5)

    def test_clamped_to_bounds(self) -> None:
        config = TrendConfig(cap_steps=100, step_weight=0.1)
        assert trend_multiplier(1, 40, config) == pytest.approx(2.0)
        assert trend_multiplier(40, 1, config) == pytest.approx(0.5)

    def test_neutral_without_previous_rank(self) -> None:
        assert trend_multiplier(3, None, TrendConfig()) == 1.0

    def test_neutral_when_unranked_today(self) -> None:
        assert trend_multiplier(None, 4, TrendConfig()) == 1.0


# ============================================================================
# Velocity and consistency
# ============================================================================


class TestWindowStatistics:
    def test_velocity_zero_for_single_point(self) -> None:
        assert velocity_score([0.0], [50.0]) == 0.0

    def test_velocity_zero_for_zero_mean(self) -> None:
        assert velocity_score([-1.0, 0.0], [0.0, 0.0]) == 0.0

    def test_velocity_is_slope_over_mean(self) -> None:
        # slope 10/day, mean 20
        assert velocity_score([-2.0, -1.0, 0.0], [10.0, 20.0, 30.0]) == pytest.approx(0.5)

    def test_velocity_negative_for_decline(self) -> None:
        assert velocity_score([-1.0, 0.0], [30.0, 10.0]) < 0

    def test_consistency_single_point_is_max(self) -> None:
        assert consistency_score([42.0], 1e-9) == 100.0

    def test_consistency_flat_series_is_max(self) -> None:
        assert consistency_score([5.0, 5.0, 5.0], 1e-9) == pytest.approx(100.0)

    def test_consistency_uses_population_stddev(self) -> None:
        # mean 20, population std 10 -> 100 * (1 - 0.5)
        assert consistency_score([10.0, 30.0], 1e-9) == pytest.approx(50.0)

    def test_consistency_floor_is_zero(self) -> None:
        assert consistency_score([0.0, 0.0, 100.0], 1e-9) == 0.0

    def test_market_share(self) -> None:
        assert market_share_percent(25.0, 1, 100.0) == pytest.approx(25.0)
        assert market_share_percent(25.0, None, 100.0) == 0.0
        assert market_share_percent(0.0, 1, 0.0) == 0.0


# ============================================================================
# Scorer
# ============================================================================


class TestTrendScorer:
    def test_first_appearance(self, scorer: TrendScorer, base_date: date) -> None:
        trend = scorer.score(today_row(base_date, rank=3), [], group_total=400.0)

        assert trend.previous_rank is None
        assert trend.trend_multiplier == 1.0
        assert trend.streak_days == 1
        assert trend.velocity_score == 0.0
        assert trend.consistency_score == 100.0
        assert trend.market_share_percent == pytest.approx(25.0)

    def test_previous_rank_from_history(self, scorer: TrendScorer, base_date: date) -> None:
        history = [make_stat(1, base_date - timedelta(days=1), rank=10)]

        trend = scorer.score(today_row(base_date, rank=5), history, group_total=1000.0)

        assert trend.previous_rank == 10
        assert trend.trend_multiplier == pytest.approx(1.25)

    def test_streak_sequence(self, scorer: TrendScorer, base_date: date) -> None:
        rows = run_days(scorer, base_date, [5, 4, 4, 6, 3])

        assert [r.streak_days for r in rows] == [1, 2, 3, 0, 1]

    def test_unranked_day_breaks_streak(self, scorer: TrendScorer, base_date: date) -> None:
        rows = run_days(scorer, base_date, [2, 2, None, 2])

        assert [r.streak_days for r in rows] == [1, 2, 0, 1]
        # Previous rank skips the unranked day.
        assert rows[3].previous_rank == 2

    def test_calendar_gap_restarts_streak(self, scorer: TrendScorer, base_date: date) -> None:
        history = [make_stat(1, base_date - timedelta(days=2), rank=4, streak_days=6)]

        trend = scorer.score(today_row(base_date, rank=3), history, group_total=100.0)

        assert trend.previous_rank == 4
        assert trend.streak_days == 1

    def test_last_ranked_used_when_history_has_no_rank(
        self, scorer: TrendScorer, base_date: date
    ) -> None:
        history = [make_stat(1, base_date - timedelta(days=1), rank=None, streak_days=0)]
        last_ranked = make_stat(1, base_date - timedelta(days=40), rank=7)

        trend = scorer.score(
            today_row(base_date, rank=2), history, group_total=100.0, last_ranked=last_ranked
        )

        assert trend.previous_rank == 7
        assert trend.trend_multiplier == pytest.approx(1.25)

    def test_uncomputed_history_is_ignored(self, scorer: TrendScorer, base_date: date) -> None:
        history = [make_stat(1, base_date - timedelta(days=1), rank=9, computed=False)]

        trend = scorer.score(today_row(base_date, rank=2), history, group_total=100.0)

        assert trend.previous_rank is None
        assert trend.streak_days == 1

    def test_future_rows_are_ignored(self, scorer: TrendScorer, base_date: date) -> None:
        poison = make_stat(1, base_date + timedelta(days=3), rank=1, total_points=1e9, streak_days=50)

        trend = scorer.score(today_row(base_date, rank=4), [poison], group_total=400.0)

        assert trend.previous_rank is None
        assert trend.streak_days == 1
        assert trend.velocity_score == 0.0

    def test_window_excludes_old_rows(self, base_date: date) -> None:
        scorer = TrendScorer(TrendConfig(window_days=3))
        history = [
            make_stat(1, base_date - timedelta(days=1), total_points=100.0),
            make_stat(1, base_date - timedelta(days=5), total_points=0.0),
        ]

        trend = scorer.score(today_row(base_date, rank=1, total_points=100.0), history, group_total=100.0)

        assert trend.consistency_score == pytest.approx(100.0)
        assert trend.velocity_score == pytest.approx(0.0)

    def test_velocity_accounts_for_date_gaps(self, scorer: TrendScorer, base_date: date) -> None:
        history = [make_stat(1, base_date - timedelta(days=4), total_points=60.0)]

        trend = scorer.score(today_row(base_date, rank=1, total_points=100.0), history, group_total=100.0)

        # slope 40 over 4 days = 10/day, mean 80
        assert trend.velocity_score == pytest.approx(10.0 / 80.0)

    def test_missing_raw_inputs_raise(self, scorer: TrendScorer, base_date: date) -> None:
        with pytest.raises(InsufficientHistoryError):
            scorer.score(today_row(base_date, rank=None, total_points=None), [], group_total=0.0)

    def test_inactive_entity_without_points_scores_as_zero(
        self, scorer: TrendScorer, base_date: date
    ) -> None:
        trend = scorer.score(
            today_row(base_date, rank=None, total_points=None, order_count=0), [], group_total=50.0
        )

        assert trend.previous_rank is None
        assert trend.trend_multiplier == 1.0
        assert trend.streak_days == 0
        assert trend.market_share_percent == 0.0
        assert trend.velocity_score == 0.0

    def test_inactive_entity_gets_neutral_fields(self, scorer: TrendScorer, base_date: date) -> None:
        history = [make_stat(1, base_date - timedelta(days=1), rank=2, streak_days=3)]

        trend = scorer.score(
            today_row(base_date, rank=None, total_points=0.0, order_count=0), history, group_total=50.0
        )

        assert trend.previous_rank == 2
        assert trend.trend_multiplier == 1.0
        assert trend.streak_days == 0
        assert trend.market_share_percent == 0.0

    def test_scoring_is_deterministic(self, scorer: TrendScorer, base_date: date) -> None:
        first = run_days(scorer, base_date, [3, 1, 2, 2, 5, 4], [40.0, 90.0, 55.0, 60.0, 12.0, 30.0])
        second = run_days(scorer, base_date, [3, 1, 2, 2, 5, 4], [40.0, 90.0, 55.0, 60.0, 12.0, 30.0])

        assert [r.derived_fields() for r in first] == [r.derived_fields() for r in second]

    def test_config_from_settings(self) -> None:
        from entity_trend_engine.config import TrendSettings

        settings = TrendSettings(TREND_CAP_STEPS=4, TREND_WINDOW_DAYS=14)
        config = TrendConfig.from_settings(settings)

        assert config.cap_steps == 4
        assert config.window_days == 14
        assert config.step_weight == pytest.approx(0.05)
