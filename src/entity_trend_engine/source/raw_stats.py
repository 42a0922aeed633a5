"""Raw stat sources.

The raw counters are produced by an external analytics feed. This module
defines the interface the orchestrator consumes, a source that reads the
counters the upstream collector already wrote into the stat table, and a
retrying wrapper for transient failures.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import TYPE_CHECKING, Protocol

from entity_trend_engine.errors import RowPersistenceError, SourceUnavailableError
from entity_trend_engine.models import Category, RawEntityStat

if TYPE_CHECKING:
    from entity_trend_engine.storage.store import StatStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0


class RawStatSource(Protocol):
    async def fetch_raw_stats(self, category: Category, stat_date: date) -> list[RawEntityStat]: ...


class StoreRawStatSource:
    """Reads raw counters from the stat store."""

    def __init__(self, store: StatStore) -> None:
        self.store = store

    async def fetch_raw_stats(self, category: Category, stat_date: date) -> list[RawEntityStat]:
        try:
            rows = await self.store.list_rows(category, stat_date)
        except RowPersistenceError as e:
            raise SourceUnavailableError(
                str(e), category=category.value, stat_date=stat_date, last_exception=e
            ) from e
        return [row.to_raw() for row in rows]


class RetryingRawStatSource:
    """Retries `SourceUnavailableError` with exponential backoff.

    After `max_retries` retries the last error is re-raised as a
    `SourceUnavailableError` carrying the category and date.
    """

    def __init__(
        self,
        inner: RawStatSource,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    async def fetch_raw_stats(self, category: Category, stat_date: date) -> list[RawEntityStat]:
        last_exception: SourceUnavailableError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return await self.inner.fetch_raw_stats(category, stat_date)
            except SourceUnavailableError as e:
                last_exception = e
                if attempt == self.max_retries:
                    break

                delay = self.base_delay * (2**attempt)
                logger.warning(
                    "Raw stat fetch for %s on %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                    category.value,
                    stat_date,
                    attempt + 1,
                    self.max_retries + 1,
                    str(e),
                    delay,
                )
                await self._sleep(delay)

        raise SourceUnavailableError(
            f"All {self.max_retries + 1} attempts failed fetching {category.value} stats for {stat_date}",
            category=category.value,
            stat_date=stat_date,
            last_exception=last_exception,
        )
