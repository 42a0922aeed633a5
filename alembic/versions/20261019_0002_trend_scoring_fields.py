"""Add trend scoring fields and the streak index.

Columns and the index are only added when missing, so this revision can be
stamped onto databases where the trend step already ran via the CLI.

Revision ID: 002_trend_scoring_fields
Revises: 001_daily_entity_stats
Create Date: 2026-10-19 00:02:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_trend_scoring_fields"
down_revision: Union[str, None] = "001_daily_entity_stats"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE = "daily_entity_stats"
STREAK_INDEX = "idx_daily_entity_stats_streak"

TREND_COLUMNS = (
    ("previous_rank", sa.Integer()),
    ("trend_multiplier", sa.Float()),
    ("consistency_score", sa.Float()),
    ("velocity_score", sa.Float()),
    ("streak_days", sa.Integer()),
    ("market_share_percent", sa.Float()),
    ("computed_at", sa.DateTime(timezone=True)),
)


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing = {col["name"] for col in inspector.get_columns(TABLE)}
    for name, type_ in TREND_COLUMNS:
        if name not in existing:
            op.add_column(TABLE, sa.Column(name, type_, nullable=True))

    indexes = {idx["name"] for idx in inspector.get_indexes(TABLE)}
    if STREAK_INDEX not in indexes:
        op.create_index(STREAK_INDEX, TABLE, ["category", "streak_days"])


def downgrade() -> None:
    op.drop_index(STREAK_INDEX, table_name=TABLE)
    for name, _ in reversed(TREND_COLUMNS):
        op.drop_column(TABLE, name)
