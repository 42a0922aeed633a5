"""Tests for domain models."""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import pytest
from conftest import BASE_DATE, make_raw, make_stat

from entity_trend_engine.models import (
    Category,
    DailyEntityStat,
    RawEntityStat,
    TrendFields,
    normalize_stat_date,
)


class TestCategory:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("product", Category.PRODUCT),
            ("PHARMACY", Category.PHARMACY),
            ("strain", Category.CANNABIS_STRAIN),
            ("cannabis-strain", Category.CANNABIS_STRAIN),
            (Category.BRAND, Category.BRAND),
        ],
    )
    def test_parse(self, value, expected: Category) -> None:
        assert Category.parse(value) is expected

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError, match="expected one of"):
            Category.parse("dispensary")


class TestNormalizeStatDate:
    def test_plain_date_passes_through(self) -> None:
        assert normalize_stat_date(BASE_DATE) == BASE_DATE

    def test_naive_datetime_is_utc(self) -> None:
        assert normalize_stat_date(datetime(2024, 3, 1, 23, 30)) == date(2024, 3, 1)

    def test_timezone_moves_day_boundary(self) -> None:
        stamp = datetime(2024, 3, 2, 3, 0, tzinfo=UTC)

        assert normalize_stat_date(stamp, ZoneInfo("America/Los_Angeles")) == date(2024, 3, 1)


class TestRawEntityStat:
    def test_from_dict_camel_case(self) -> None:
        raw = RawEntityStat.from_dict(
            {"entityId": "12", "orderCount": 3, "totalPoints": "45.5"},
            category=Category.BRAND,
            stat_date=BASE_DATE,
        )

        assert raw == RawEntityStat(12, Category.BRAND, BASE_DATE, 3, 45.5)
        assert raw.is_active

    def test_from_dict_snake_case_with_missing_counts(self) -> None:
        raw = RawEntityStat.from_dict(
            {"entity_id": 4}, category=Category.PRODUCT, stat_date=BASE_DATE
        )

        assert raw.order_count is None
        assert raw.total_points is None
        assert not raw.is_active

    def test_from_dict_requires_entity_id(self) -> None:
        with pytest.raises(ValueError):
            RawEntityStat.from_dict({"orderCount": 1}, category=Category.PRODUCT, stat_date=BASE_DATE)


class TestDailyEntityStat:
    def test_from_raw_has_no_derived_fields(self) -> None:
        row = DailyEntityStat.from_raw(make_raw(1, 10.0), rank=2)

        assert row.rank == 2
        assert not row.has_derived_fields
        assert row.to_raw() == make_raw(1, 10.0)

    def test_with_trend(self) -> None:
        trend = TrendFields(
            previous_rank=4,
            trend_multiplier=1.05,
            consistency_score=80.0,
            velocity_score=0.1,
            streak_days=2,
            market_share_percent=12.5,
        )
        stamp = datetime(2024, 3, 1, tzinfo=UTC)

        row = DailyEntityStat.from_raw(make_raw(1, 10.0), rank=3).with_trend(trend, computed_at=stamp)

        assert row.has_derived_fields
        assert row.derived_fields() == (3, 4, 1.05, 80.0, 0.1, 2, 12.5)

    def test_to_dict_uses_camel_case(self) -> None:
        data = make_stat(9, BASE_DATE, rank=1).to_dict()

        assert data["entityId"] == 9
        assert data["statDate"] == "2024-03-01"
        assert data["streakDays"] == 1
        assert data["computedAt"].startswith("2024-01-01")
