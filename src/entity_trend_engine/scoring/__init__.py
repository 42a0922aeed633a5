"""Scoring layer - ranking, trend fields and points breakdown."""

from entity_trend_engine.scoring.breakdown import PointsBreakdown, compute_breakdown, streak_tier
from entity_trend_engine.scoring.ranker import RankAssigner, RankedGroup, validate_raw_stat
from entity_trend_engine.scoring.trend import TrendConfig, TrendScorer

__all__ = [
    "PointsBreakdown",
    "RankAssigner",
    "RankedGroup",
    "TrendConfig",
    "TrendScorer",
    "compute_breakdown",
    "streak_tier",
    "validate_raw_stat",
]
