"""Command-line entry point.

Usage:
    entity-trend-engine apply-schema
    entity-trend-engine backfill --from=2024-01-01 --to=2024-01-31 [--category=product] [--force]
    entity-trend-engine backfill --date=2024-01-15
    entity-trend-engine compute-today [--category=pharmacy]
    entity-trend-engine explain --category=brand --entity-id=42 --date=2024-01-15
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError
from redis.asyncio import Redis

from entity_trend_engine.backfill.lease import CategoryLease
from entity_trend_engine.backfill.orchestrator import BackfillOrchestrator, BackfillSummary
from entity_trend_engine.backfill.progress import ProgressLine, default_progress_enabled
from entity_trend_engine.config import Settings, get_settings
from entity_trend_engine.errors import SchemaApplicationError, StoreUnavailableError
from entity_trend_engine.models import Category, normalize_stat_date
from entity_trend_engine.scoring.breakdown import compute_breakdown
from entity_trend_engine.scoring.trend import TrendConfig, TrendScorer
from entity_trend_engine.source.raw_stats import RetryingRawStatSource, StoreRawStatSource
from entity_trend_engine.storage.database import DatabaseManager
from entity_trend_engine.storage.store import SqlStatStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_STRICT_FAILURE = 2


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (expected YYYY-MM-DD)") from None


def _parse_category(value: str) -> Category:
    try:
        return Category.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entity-trend-engine",
        description="Rank daily entity stats, compute trend fields and backfill history",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("apply-schema", help="Apply the trend-scoring schema changes and verify them")

    backfill = sub.add_parser("backfill", help="Populate derived fields over a date range")
    backfill.add_argument("--from", dest="start", type=_parse_date, default=None, help="First date (YYYY-MM-DD)")
    backfill.add_argument("--to", dest="end", type=_parse_date, default=None, help="Last date (YYYY-MM-DD)")
    backfill.add_argument("--date", dest="single_date", type=_parse_date, default=None, help="Backfill a single date")
    _add_common_run_args(backfill)
    backfill.add_argument(
        "--resume",
        action="store_true",
        help="Start each category at its first date still missing derived fields",
    )
    backfill.add_argument(
        "--skip-schema",
        action="store_true",
        help="Do not run the schema step before backfilling",
    )

    today = sub.add_parser("compute-today", help="Compute derived fields for today's date")
    _add_common_run_args(today)

    explain = sub.add_parser("explain", help="Show a stored row and its points breakdown")
    explain.add_argument("--category", type=_parse_category, required=True)
    explain.add_argument("--entity-id", type=int, required=True)
    explain.add_argument("--date", dest="stat_date", type=_parse_date, required=True)

    return parser


def _add_common_run_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--category",
        dest="categories",
        type=_parse_category,
        action="append",
        default=None,
        help="Restrict to a category (repeatable); default is every category",
    )
    parser.add_argument("--force", action="store_true", help="Recompute rows that already have derived fields")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero if any row failed or any date was skipped",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress line")


def resolve_date_range(args: argparse.Namespace, parser: argparse.ArgumentParser) -> tuple[date, date]:
    if args.single_date is not None:
        if args.start is not None or args.end is not None:
            parser.error("--date cannot be combined with --from/--to")
        return args.single_date, args.single_date
    if args.start is None or args.end is None:
        parser.error("backfill requires --from and --to, or --date")
    if args.start > args.end:
        parser.error(f"--from {args.start} is after --to {args.end}")
    return args.start, args.end


def build_orchestrator(
    settings: Settings,
    store: SqlStatStore,
    *,
    redis: Redis | None = None,
    progress: ProgressLine | None = None,
) -> BackfillOrchestrator:
    source = RetryingRawStatSource(
        StoreRawStatSource(store),
        max_retries=settings.backfill.source_max_retries,
        base_delay=settings.backfill.source_retry_base_delay_seconds,
    )
    lease = None
    if redis is not None:
        lease = CategoryLease(redis, ttl_seconds=settings.backfill.category_lock_ttl_seconds)
    return BackfillOrchestrator(
        store,
        source,
        scorer=TrendScorer(TrendConfig.from_settings(settings.trend)),
        max_concurrency=settings.backfill.max_concurrency,
        max_parallel_categories=settings.backfill.max_parallel_categories,
        lease=lease,
        progress=progress,
    )


def _emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")
    sys.stdout.flush()


def _install_stop_handlers(orchestrator: BackfillOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is not available on every platform
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, orchestrator.request_stop)


async def _run_backfill(
    settings: Settings,
    start: date,
    end: date,
    *,
    categories: list[Category] | None,
    force: bool,
    resume: bool,
    apply_schema: bool,
    show_progress: bool,
) -> BackfillSummary:
    db = DatabaseManager(
        settings.database.url,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
    )
    redis: Redis | None = None
    if settings.backfill.category_lock_enabled:
        redis = Redis.from_url(settings.redis.url)
    try:
        store = SqlStatStore(db)
        orchestrator = build_orchestrator(
            settings,
            store,
            redis=redis,
            progress=ProgressLine(enabled=show_progress),
        )
        _install_stop_handlers(orchestrator)
        return await orchestrator.run(
            start,
            end,
            categories=categories,
            force=force,
            resume=resume,
            apply_schema=apply_schema,
        )
    finally:
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()


async def _run_apply_schema(settings: Settings) -> dict[str, Any]:
    db = DatabaseManager(settings.database.url)
    try:
        store = SqlStatStore(db)
        orchestrator = build_orchestrator(settings, store)
        result = await orchestrator.ensure_schema()
        return result.to_dict()
    finally:
        await db.dispose_async()


async def _run_explain(settings: Settings, category: Category, entity_id: int, stat_date: date) -> dict[str, Any] | None:
    db = DatabaseManager(settings.database.url)
    try:
        store = SqlStatStore(db)
        row = await store.get_row(entity_id, category, stat_date)
        if row is None:
            return None
        return {
            "row": row.to_dict(),
            "breakdown": compute_breakdown(row).to_dict() if row.has_derived_fields else None,
        }
    finally:
        await db.dispose_async()


def _exit_code(summary: BackfillSummary, *, strict: bool) -> int:
    if strict and summary.has_failures:
        logger.error("Strict mode: run finished with failures %s", summary.totals())
        return EXIT_STRICT_FAILURE
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", e)
        return EXIT_FATAL

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting %s with settings %s", args.command, settings.redacted_summary())

    if args.command == "backfill":
        start, end = resolve_date_range(args, parser)
    elif args.command == "compute-today":
        start = end = normalize_stat_date(datetime.now(UTC), settings.backfill.tzinfo)

    try:
        if args.command == "apply-schema":
            result = asyncio.run(_run_apply_schema(settings))
            _emit({"schema": result})
            return EXIT_OK

        if args.command == "explain":
            payload = asyncio.run(_run_explain(settings, args.category, args.entity_id, args.stat_date))
            if payload is None:
                logger.error(
                    "No row for entity %s (%s) on %s", args.entity_id, args.category.value, args.stat_date
                )
                return EXIT_FATAL
            _emit(payload)
            return EXIT_OK

        summary = asyncio.run(
            _run_backfill(
                settings,
                start,
                end,
                categories=args.categories,
                force=args.force,
                resume=getattr(args, "resume", False),
                apply_schema=not getattr(args, "skip_schema", False),
                show_progress=default_progress_enabled() and not args.no_progress,
            )
        )
    except SchemaApplicationError as e:
        logger.error("Schema step failed: %s", e)
        return EXIT_FATAL
    except StoreUnavailableError as e:
        logger.error("Stat store unavailable: %s", e)
        return EXIT_FATAL

    _emit(summary.to_dict())
    return _exit_code(summary, strict=args.strict or settings.backfill.strict)


if __name__ == "__main__":
    sys.exit(main())
