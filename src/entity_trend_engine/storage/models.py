"""SQLAlchemy models for persistent storage.

One table holds every category: raw daily counters written upstream plus the
trend-derived fields this engine populates.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import Date, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DailyEntityStatModel(Base):
    """SQLAlchemy model for per-day entity stats."""

    __tablename__ = "daily_entity_stats"

    entity_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    category: Mapped[str] = mapped_column(String(32), primary_key=True)
    stat_date: Mapped[date] = mapped_column(Date, primary_key=True)

    # Raw inputs
    order_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_points: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Derived fields (NULL until computed)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trend_multiplier: Mapped[float | None] = mapped_column(Float, nullable=True)
    consistency_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    velocity_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    streak_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    market_share_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_daily_entity_stats_category_date", "category", "stat_date"),
        Index("idx_daily_entity_stats_streak", "category", "streak_days"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyEntityStatModel(entity_id={self.entity_id}, category={self.category}, "
            f"stat_date={self.stat_date}, rank={self.rank})>"
        )
