"""Backfill layer - schema evolution and historical recomputation."""

from entity_trend_engine.backfill.lease import CategoryLease
from entity_trend_engine.backfill.orchestrator import (
    BackfillOrchestrator,
    BackfillState,
    BackfillSummary,
    CategorySummary,
)
from entity_trend_engine.backfill.progress import ProgressLine, default_progress_enabled

__all__ = [
    "BackfillOrchestrator",
    "BackfillState",
    "BackfillSummary",
    "CategoryLease",
    "CategorySummary",
    "ProgressLine",
    "default_progress_enabled",
]
