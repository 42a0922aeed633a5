"""Schema evolution and historical backfill of trend-derived fields.

Flow:
    ensure schema -> per category (parallel) -> per date (ascending)
    -> rank the whole date -> score + upsert each entity (bounded parallel)
    -> verify the persisted group

All memory of prior days is read back from the stat store, so a run can be
interrupted and restarted at any time. Row-level failures are contained and
reported; only schema failures and store connectivity failures halt a run.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from entity_trend_engine.errors import (
    InsufficientHistoryError,
    InvalidInputError,
    RowPersistenceError,
    SchemaApplicationError,
    SourceUnavailableError,
    StoreUnavailableError,
)
from entity_trend_engine.models import Category, DailyEntityStat, RawEntityStat
from entity_trend_engine.scoring.ranker import RankAssigner, RankedGroup, validate_raw_stat
from entity_trend_engine.scoring.trend import TrendScorer
from entity_trend_engine.storage.schema import (
    TREND_SCORING_CHANGES,
    AddColumn,
    ColumnCheck,
    SchemaChange,
    SchemaChangeResult,
    SchemaRunResult,
    SchemaState,
)

if TYPE_CHECKING:
    from entity_trend_engine.backfill.lease import CategoryLease
    from entity_trend_engine.backfill.progress import ProgressLine
    from entity_trend_engine.source.raw_stats import RawStatSource
    from entity_trend_engine.storage.store import StatStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_MAX_PARALLEL_CATEGORIES = 5
MARKET_SHARE_TOLERANCE = 1e-6


class BackfillState(str, Enum):
    """Per-category backfill lifecycle."""

    PENDING = "pending"
    BACKFILLING = "backfilling"
    VERIFIED = "verified"
    PARTIALLY_FAILED = "partially_failed"


class RowOutcome(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CategorySummary:
    """Counters for one category's backfill."""

    category: Category
    state: BackfillState = BackfillState.PENDING
    start_date: date | None = None
    end_date: date | None = None
    dates_processed: int = 0
    dates_empty: int = 0
    rows_processed: int = 0
    rows_unchanged: int = 0
    rows_skipped: int = 0
    rows_failed: int = 0
    gap_dates: list[date] = field(default_factory=list)
    failed_dates: list[date] = field(default_factory=list)
    verification_failures: list[str] = field(default_factory=list)
    last_completed_date: date | None = None
    interrupted: bool = False
    skipped_reason: str | None = None

    @property
    def has_failures(self) -> bool:
        return bool(self.rows_failed or self.gap_dates or self.verification_failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "state": self.state.value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "dates_processed": self.dates_processed,
            "dates_empty": self.dates_empty,
            "rows_processed": self.rows_processed,
            "rows_unchanged": self.rows_unchanged,
            "rows_skipped": self.rows_skipped,
            "rows_failed": self.rows_failed,
            "gap_dates": [d.isoformat() for d in self.gap_dates],
            "failed_dates": [d.isoformat() for d in self.failed_dates],
            "verification_failures": list(self.verification_failures),
            "last_completed_date": (
                self.last_completed_date.isoformat() if self.last_completed_date else None
            ),
            "interrupted": self.interrupted,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class BackfillSummary:
    """Structured run summary, produced even on partial failure."""

    start_date: date
    end_date: date
    force: bool = False
    schema: SchemaRunResult | None = None
    categories: dict[Category, CategorySummary] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def interrupted(self) -> bool:
        return any(c.interrupted for c in self.categories.values())

    @property
    def has_failures(self) -> bool:
        if self.schema is not None and not self.schema.verified:
            return True
        return any(c.has_failures for c in self.categories.values())

    def totals(self) -> dict[str, int]:
        cats = self.categories.values()
        return {
            "dates_processed": sum(c.dates_processed for c in cats),
            "rows_processed": sum(c.rows_processed for c in cats),
            "rows_unchanged": sum(c.rows_unchanged for c in cats),
            "rows_skipped": sum(c.rows_skipped for c in cats),
            "rows_failed": sum(c.rows_failed for c in cats),
            "gap_dates": sum(len(c.gap_dates) for c in cats),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "force": self.force,
            "schema": self.schema.to_dict() if self.schema else None,
            "categories": {c.value: s.to_dict() for c, s in self.categories.items()},
            "totals": self.totals(),
            "interrupted": self.interrupted,
            "has_failures": self.has_failures,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of calendar dates from start to end."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


class BackfillOrchestrator:
    """Applies the trend schema and populates derived fields over history.

    Example:
        ```python
        store = SqlStatStore(DatabaseManager(settings.database.url))
        source = RetryingRawStatSource(StoreRawStatSource(store))
        orchestrator = BackfillOrchestrator(store, source)
        summary = await orchestrator.run(date(2024, 1, 1), date(2024, 1, 31))
        ```
    """

    def __init__(
        self,
        store: StatStore,
        source: RawStatSource,
        *,
        ranker: RankAssigner | None = None,
        scorer: TrendScorer | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_parallel_categories: int = DEFAULT_MAX_PARALLEL_CATEGORIES,
        lease: CategoryLease | None = None,
        progress: ProgressLine | None = None,
    ) -> None:
        self.store = store
        self.source = source
        self.ranker = ranker or RankAssigner()
        self.scorer = scorer or TrendScorer()
        self.max_concurrency = max_concurrency
        self.max_parallel_categories = max_parallel_categories
        self.lease = lease
        self.progress = progress

        self.schema_state = SchemaState.NOT_APPLIED
        self._stop_event = asyncio.Event()
        self._dates_total = 0
        self._dates_done = 0
        self._rows_written = 0
        self._rows_failed = 0

    def request_stop(self) -> None:
        """Stop every category after its current date completes."""
        logger.info("Stop requested; finishing in-flight dates")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Schema step
    # ------------------------------------------------------------------

    async def ensure_schema(
        self, changes: Sequence[SchemaChange] = TREND_SCORING_CHANGES
    ) -> SchemaRunResult:
        """Apply schema changes once, then verify every added column.

        Raises:
            SchemaApplicationError: If any change fails for a reason other
                than already being applied.
        """
        result = SchemaRunResult(state=SchemaState.APPLYING)
        self.schema_state = SchemaState.APPLYING
        logger.info("Applying %d schema changes", len(changes))
        try:
            for change in changes:
                outcome = await self.store.apply_schema_change(change)
                if outcome is SchemaChangeResult.APPLIED:
                    result.applied.append(change.name)
                else:
                    result.already_applied.append(change.name)
        except SchemaApplicationError:
            self.schema_state = SchemaState.NOT_APPLIED
            result.state = SchemaState.NOT_APPLIED
            logger.error("Schema step failed after %d changes", len(result.applied))
            raise

        self.schema_state = SchemaState.APPLIED
        result.state = SchemaState.APPLIED
        result.verification = await self.verify_schema(changes)
        logger.info(
            "Schema step complete: %d applied, %d already applied",
            len(result.applied),
            len(result.already_applied),
        )
        return result

    async def verify_schema(self, changes: Iterable[SchemaChange]) -> list[ColumnCheck]:
        """Probe each added column; log pass/fail without aborting."""
        checks: list[ColumnCheck] = []
        for change in changes:
            if not isinstance(change, AddColumn):
                continue
            present = await self.store.probe_column(change.table, change.column)
            checks.append(ColumnCheck(table=change.table, column=change.column, present=present))
            if present:
                logger.info("Verified column %s.%s", change.table, change.column)
            else:
                logger.error("Column %s.%s is missing after schema step", change.table, change.column)
        return checks

    # ------------------------------------------------------------------
    # Backfill step
    # ------------------------------------------------------------------

    async def run(
        self,
        start: date,
        end: date,
        *,
        categories: Sequence[Category] | None = None,
        force: bool = False,
        resume: bool = False,
        apply_schema: bool = True,
    ) -> BackfillSummary:
        """Run the schema step and backfill every category over [start, end].

        Raises:
            ValueError: If `start` is after `end`.
            SchemaApplicationError: If the schema step fails.
            StoreUnavailableError: If the store connection is lost.
        """
        if start > end:
            raise ValueError(f"start date {start} is after end date {end}")

        summary = BackfillSummary(start_date=start, end_date=end, force=force)
        if apply_schema:
            summary.schema = await self.ensure_schema()

        selected = list(categories) if categories else list(Category)
        for category in selected:
            summary.categories[category] = CategorySummary(category=category)

        self._dates_total = len(selected) * len(date_range(start, end))
        self._dates_done = 0

        semaphore = asyncio.Semaphore(self.max_parallel_categories)

        async def _bounded(category: Category) -> None:
            async with semaphore:
                await self.backfill_category(
                    category,
                    start,
                    end,
                    force=force,
                    resume=resume,
                    summary=summary.categories[category],
                )

        results = await asyncio.gather(
            *(_bounded(category) for category in selected), return_exceptions=True
        )
        summary.finished_at = datetime.now(UTC)
        if self.progress is not None:
            totals = summary.totals()
            self.progress.close(
                final_line=(
                    f"backfill done: dates={totals['dates_processed']:,} "
                    f"rows={totals['rows_processed']:,} failed={totals['rows_failed']:,}"
                )
            )

        for category, result in zip(selected, results):
            if isinstance(result, BaseException):
                logger.error("Backfill of %s aborted: %s", category.value, result)
                raise result

        logger.info("Backfill finished: %s", summary.totals())
        return summary

    async def backfill_category(
        self,
        category: Category,
        start: date,
        end: date,
        *,
        force: bool = False,
        resume: bool = False,
        summary: CategorySummary | None = None,
    ) -> CategorySummary:
        """Backfill one category, dates strictly ascending."""
        summary = summary or CategorySummary(category=category)
        summary.start_date = start
        summary.end_date = end

        if self.lease is not None and not await self.lease.acquire(category):
            summary.skipped_reason = "category_locked"
            return summary

        try:
            first = start
            if resume:
                pending = await self.store.first_unprocessed_date(category, start, end)
                if pending is None:
                    logger.info("Nothing to resume for %s in %s..%s", category.value, start, end)
                    summary.state = BackfillState.VERIFIED
                    return summary
                first = pending
                summary.start_date = first
                logger.info("Resuming %s from %s", category.value, first)

            summary.state = BackfillState.BACKFILLING
            for stat_date in date_range(first, end):
                if self.stop_requested:
                    summary.interrupted = True
                    logger.info(
                        "Backfill of %s interrupted; last completed date %s",
                        category.value,
                        summary.last_completed_date,
                    )
                    return summary
                await self.process_date(category, stat_date, summary, force=force)
                summary.last_completed_date = stat_date
                self._dates_done += 1
                self._render_progress()

            summary.state = (
                BackfillState.PARTIALLY_FAILED if summary.has_failures else BackfillState.VERIFIED
            )
            logger.info(
                "Backfill of %s %s: %d dates, %d written, %d unchanged, %d skipped, %d failed",
                category.value,
                summary.state.value,
                summary.dates_processed,
                summary.rows_processed,
                summary.rows_unchanged,
                summary.rows_skipped,
                summary.rows_failed,
            )
            return summary
        finally:
            if self.lease is not None:
                await self.lease.release(category)

    async def process_date(
        self,
        category: Category,
        stat_date: date,
        summary: CategorySummary,
        *,
        force: bool = False,
    ) -> None:
        """Rank, score, persist and verify one (category, date) group."""
        try:
            raw_rows = await self.source.fetch_raw_stats(category, stat_date)
        except SourceUnavailableError as e:
            logger.warning("Skipping %s on %s: raw stats unavailable (%s)", category.value, stat_date, e)
            summary.gap_dates.append(stat_date)
            return

        if not raw_rows:
            logger.debug("No raw stats for %s on %s", category.value, stat_date)
            summary.dates_empty += 1
            return

        valid = self._valid_rows(category, stat_date, raw_rows, summary)
        group = (
            self.ranker.assign(valid)
            if valid
            else RankedGroup(category=category, stat_date=stat_date)
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(raw: RawEntityStat) -> RowOutcome:
            async with semaphore:
                return await self._process_entity(raw, group, force=force)

        results = await asyncio.gather(*(_bounded(raw) for raw in valid), return_exceptions=True)

        failed_before = summary.rows_failed
        for raw, result in zip(valid, results):
            if isinstance(result, (StoreUnavailableError, asyncio.CancelledError)):
                raise result
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error scoring entity %s (%s) on %s: %s",
                    raw.entity_id,
                    category.value,
                    stat_date,
                    result,
                    exc_info=result,
                )
                result = RowOutcome.FAILED
            if result is RowOutcome.WRITTEN:
                summary.rows_processed += 1
                self._rows_written += 1
            elif result is RowOutcome.UNCHANGED:
                summary.rows_unchanged += 1
            elif result is RowOutcome.SKIPPED:
                summary.rows_skipped += 1
            else:
                summary.rows_failed += 1
                self._rows_failed += 1

        summary.dates_processed += 1
        if summary.rows_failed > failed_before:
            summary.failed_dates.append(stat_date)
        else:
            await self._verify_date(category, stat_date, summary)

        logger.info(
            "Processed %s %s: %d entities, %d ranked, %d failed",
            category.value,
            stat_date,
            len(raw_rows),
            group.size,
            summary.rows_failed - failed_before,
        )

    def _valid_rows(
        self,
        category: Category,
        stat_date: date,
        raw_rows: Sequence[RawEntityStat],
        summary: CategorySummary,
    ) -> list[RawEntityStat]:
        valid: list[RawEntityStat] = []
        seen: set[int] = set()
        for raw in raw_rows:
            try:
                if raw.category != category or raw.stat_date != stat_date:
                    raise InvalidInputError(
                        f"entity {raw.entity_id}: row belongs to ({raw.category.value}, {raw.stat_date})",
                        entity_id=raw.entity_id,
                    )
                if raw.entity_id in seen:
                    raise InvalidInputError(
                        f"entity {raw.entity_id}: duplicate row", entity_id=raw.entity_id
                    )
                validate_raw_stat(raw)
            except InvalidInputError as e:
                logger.warning("Skipping invalid row for %s on %s: %s", category.value, stat_date, e)
                summary.rows_skipped += 1
                continue
            seen.add(raw.entity_id)
            valid.append(raw)
        return valid

    async def _process_entity(
        self,
        raw: RawEntityStat,
        group: RankedGroup,
        *,
        force: bool,
    ) -> RowOutcome:
        today = DailyEntityStat.from_raw(raw, rank=group.rank_of(raw.entity_id))
        try:
            existing = await self.store.get_row(raw.entity_id, raw.category, raw.stat_date)
            if existing is not None and existing.has_derived_fields and not force:
                return RowOutcome.UNCHANGED

            history = await self.store.get_history(
                raw.entity_id,
                raw.category,
                raw.stat_date,
                self.scorer.config.window_days,
            )
            last_ranked = None
            if not any(r.rank is not None for r in history):
                last_ranked = await self.store.get_latest_ranked(
                    raw.entity_id, raw.category, raw.stat_date
                )
            trend = self.scorer.score(
                today, history, group_total=group.total_points, last_ranked=last_ranked
            )
        except (InvalidInputError, InsufficientHistoryError) as e:
            logger.warning(
                "Skipping entity %s (%s) on %s: %s", raw.entity_id, raw.category.value, raw.stat_date, e
            )
            return RowOutcome.SKIPPED
        except RowPersistenceError as e:
            logger.error(
                "Store read failed for entity %s (%s) on %s: %s",
                raw.entity_id,
                raw.category.value,
                raw.stat_date,
                e,
            )
            return RowOutcome.FAILED

        row = today.with_trend(trend, computed_at=datetime.now(UTC))
        if (
            existing is not None
            and existing.has_derived_fields
            and existing.order_count == row.order_count
            and existing.total_points == row.total_points
            and existing.derived_fields() == row.derived_fields()
        ):
            return RowOutcome.UNCHANGED

        try:
            await self.store.upsert_row(row)
        except RowPersistenceError as e:
            logger.error("Row persistence failed: %s", e)
            return RowOutcome.FAILED
        return RowOutcome.WRITTEN

    async def _verify_date(self, category: Category, stat_date: date, summary: CategorySummary) -> None:
        """Check dense ranks and the market-share sum of a persisted group."""
        try:
            persisted = await self.store.list_rows(category, stat_date)
        except RowPersistenceError as e:
            problem = f"{category.value} {stat_date}: could not re-read group ({e})"
            logger.error("Verification failed: %s", problem)
            summary.verification_failures.append(problem)
            return

        rows = [r for r in persisted if r.has_derived_fields]
        ranked = [r for r in rows if r.rank is not None]
        problems: list[str] = []

        ranks = sorted(r.rank for r in ranked if r.rank is not None)
        if ranks != list(range(1, len(ranks) + 1)):
            problems.append(f"{category.value} {stat_date}: ranks are not a dense 1..{len(ranks)} sequence")

        total_points = sum(r.total_points or 0.0 for r in ranked)
        share_sum = sum(r.market_share_percent or 0.0 for r in ranked)
        expected = 100.0 if total_points > 0 else 0.0
        if ranked and not math.isclose(share_sum, expected, abs_tol=MARKET_SHARE_TOLERANCE):
            problems.append(
                f"{category.value} {stat_date}: market share sums to {share_sum:.9f}, expected {expected}"
            )

        for problem in problems:
            logger.error("Verification failed: %s", problem)
        summary.verification_failures.extend(problems)

    def _render_progress(self) -> None:
        if self.progress is None:
            return
        self.progress.update(
            dates_done=self._dates_done,
            dates_total=self._dates_total,
            rows_written=self._rows_written,
            rows_failed=self._rows_failed,
        )
