"""Same-day rank assignment within a category."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from entity_trend_engine.errors import InvalidInputError
from entity_trend_engine.models import Category, RawEntityStat

logger = logging.getLogger(__name__)


def validate_raw_stat(row: RawEntityStat) -> None:
    """Check a raw row is usable for ranking.

    Raises:
        InvalidInputError: If the order count is missing or negative, if the
            point total is negative, or if an active entity has no point total.
    """
    if row.order_count is None:
        raise InvalidInputError(
            f"entity {row.entity_id}: orderCount is missing", entity_id=row.entity_id
        )
    if row.order_count < 0:
        raise InvalidInputError(
            f"entity {row.entity_id}: orderCount is negative ({row.order_count})",
            entity_id=row.entity_id,
        )
    if row.total_points is not None and row.total_points < 0:
        raise InvalidInputError(
            f"entity {row.entity_id}: totalPoints is negative ({row.total_points})",
            entity_id=row.entity_id,
        )
    if row.order_count > 0 and row.total_points is None:
        raise InvalidInputError(
            f"entity {row.entity_id}: totalPoints is missing", entity_id=row.entity_id
        )


@dataclass(frozen=True)
class RankedGroup:
    """Ranks for one (category, date) group."""

    category: Category
    stat_date: date
    ranks: dict[int, int] = field(default_factory=dict)
    total_points: float = 0.0

    def rank_of(self, entity_id: int) -> int | None:
        return self.ranks.get(entity_id)

    @property
    def size(self) -> int:
        return len(self.ranks)


class RankAssigner:
    """Assigns a dense 1..N rank to the active entities of one date.

    Ordering is `total_points` descending with ties broken by ascending
    `entity_id`, so the result does not depend on input order. Entities with
    `order_count == 0` receive no rank.
    """

    def assign(self, rows: Sequence[RawEntityStat]) -> RankedGroup:
        """Rank the full raw row set for one (category, date).

        Args:
            rows: Every raw row for the group.

        Returns:
            RankedGroup holding ranks and the group point total.

        Raises:
            InvalidInputError: On malformed rows, duplicate entity ids, or rows
                spanning more than one category or date.
        """
        if not rows:
            raise InvalidInputError("cannot rank an empty row set")

        category = rows[0].category
        stat_date = rows[0].stat_date
        seen: set[int] = set()
        for row in rows:
            if row.category != category or row.stat_date != stat_date:
                raise InvalidInputError(
                    f"rows span multiple groups: ({category.value}, {stat_date}) "
                    f"and ({row.category.value}, {row.stat_date})",
                    entity_id=row.entity_id,
                )
            if row.entity_id in seen:
                raise InvalidInputError(
                    f"duplicate entity {row.entity_id} for ({category.value}, {stat_date})",
                    entity_id=row.entity_id,
                )
            seen.add(row.entity_id)
            validate_raw_stat(row)

        return self._rank(category, stat_date, rows)

    @staticmethod
    def _rank(category: Category, stat_date: date, rows: Sequence[RawEntityStat]) -> RankedGroup:
        active = [r for r in rows if r.is_active]
        # total_points is validated non-null for active rows.
        ordered = sorted(active, key=lambda r: (-float(r.total_points or 0.0), r.entity_id))
        ranks = {row.entity_id: position for position, row in enumerate(ordered, start=1)}
        total = sum(float(r.total_points or 0.0) for r in ordered)
        logger.debug(
            "Ranked %d of %d entities for %s on %s",
            len(ranks),
            len(rows),
            category.value,
            stat_date,
        )
        return RankedGroup(category=category, stat_date=stat_date, ranks=ranks, total_points=total)
