"""Create the daily entity stats table with raw counters and rank.

Revision ID: 001_daily_entity_stats
Revises:
Create Date: 2026-10-19 00:01:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_daily_entity_stats"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "daily_entity_stats",
        sa.Column("entity_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("stat_date", sa.Date(), nullable=False),
        sa.Column("order_count", sa.Integer(), nullable=True),
        sa.Column("total_points", sa.Float(), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entity_id", "category", "stat_date"),
    )
    op.create_index(
        "idx_daily_entity_stats_category_date",
        "daily_entity_stats",
        ["category", "stat_date"],
    )


def downgrade() -> None:
    op.drop_index("idx_daily_entity_stats_category_date", table_name="daily_entity_stats")
    op.drop_table("daily_entity_stats")
