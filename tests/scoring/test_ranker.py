"""Tests for the rank assigner."""

import random

import pytest
from conftest import make_raw

from entity_trend_engine.errors import InvalidInputError
from entity_trend_engine.models import Category
from entity_trend_engine.scoring.ranker import RankAssigner, validate_raw_stat


@pytest.fixture
def ranker() -> RankAssigner:
    return RankAssigner()


class TestRankAssigner:
    def test_orders_by_points_descending(self, ranker: RankAssigner) -> None:
        group = ranker.assign([make_raw(1, 10.0), make_raw(2, 30.0), make_raw(3, 20.0)])

        assert group.ranks == {2: 1, 3: 2, 1: 3}
        assert group.total_points == pytest.approx(60.0)

    def test_ties_broken_by_ascending_entity_id(self, ranker: RankAssigner) -> None:
        group = ranker.assign([make_raw(9, 50.0), make_raw(4, 50.0), make_raw(7, 50.0)])

        assert group.ranks == {4: 1, 7: 2, 9: 3}

    def test_ranking_is_independent_of_input_order(self, ranker: RankAssigner) -> None:
        rows = [make_raw(i, float(i % 5)) for i in range(1, 30)]
        expected = ranker.assign(rows).ranks

        shuffled = list(rows)
        random.Random(7).shuffle(shuffled)

        assert ranker.assign(shuffled).ranks == expected

    def test_inactive_entities_are_unranked(self, ranker: RankAssigner) -> None:
        group = ranker.assign(
            [
                make_raw(1, 10.0),
                make_raw(2, 99.0, order_count=0),
                make_raw(3, 5.0),
            ]
        )

        assert group.rank_of(2) is None
        assert group.ranks == {1: 1, 3: 2}
        # Unranked entities do not count towards the group total.
        assert group.total_points == pytest.approx(15.0)

    def test_ranks_form_dense_sequence(self, ranker: RankAssigner) -> None:
        rows = [make_raw(i, float(i * 3 % 11), order_count=i % 3) for i in range(1, 40)]
        group = ranker.assign(rows)

        active = [r for r in rows if r.order_count and r.order_count > 0]
        assert sorted(group.ranks.values()) == list(range(1, len(active) + 1))

    def test_all_inactive_yields_empty_group(self, ranker: RankAssigner) -> None:
        group = ranker.assign([make_raw(1, 0.0, order_count=0)])

        assert group.size == 0
        assert group.total_points == 0.0

    def test_negative_points_rejected(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError) as exc:
            ranker.assign([make_raw(1, 10.0), make_raw(2, -1.0)])
        assert exc.value.entity_id == 2

    def test_negative_points_rejected_for_inactive_entity(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError) as exc:
            ranker.assign([make_raw(1, 10.0), make_raw(2, -50.0, order_count=0)])
        assert exc.value.entity_id == 2

    def test_missing_points_rejected(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError):
            ranker.assign([make_raw(1, None)])

    def test_duplicate_entity_rejected(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError):
            ranker.assign([make_raw(1, 10.0), make_raw(1, 12.0)])

    def test_mixed_categories_rejected(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError):
            ranker.assign([make_raw(1, 10.0), make_raw(2, 12.0, category=Category.BRAND)])

    def test_empty_input_rejected(self, ranker: RankAssigner) -> None:
        with pytest.raises(InvalidInputError):
            ranker.assign([])


class TestValidateRawStat:
    def test_inactive_row_may_omit_points(self) -> None:
        validate_raw_stat(make_raw(1, None, order_count=0))

    def test_negative_order_count_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            validate_raw_stat(make_raw(1, 10.0, order_count=-2))

    def test_missing_order_count_rejected(self) -> None:
        with pytest.raises(InvalidInputError):
            validate_raw_stat(make_raw(1, 10.0, order_count=None))
