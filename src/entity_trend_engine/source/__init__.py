"""Raw stat sources consumed by the backfill orchestrator."""

from entity_trend_engine.source.raw_stats import (
    RawStatSource,
    RetryingRawStatSource,
    StoreRawStatSource,
)

__all__ = [
    "RawStatSource",
    "RetryingRawStatSource",
    "StoreRawStatSource",
]
