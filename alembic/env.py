"""Alembic environment for the daily_entity_stats migrations.

The URL comes from DATABASE_URL (environment or .env) when it is set and
valid, otherwise from `sqlalchemy.url` in alembic.ini.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from pydantic import ValidationError
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from entity_trend_engine.config import DatabaseSettings
from entity_trend_engine.storage.database import is_sqlite_url, normalize_async_database_url
from entity_trend_engine.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

try:
    url = normalize_async_database_url(DatabaseSettings().url)
    # ConfigParser interpolates "%", which appears in escaped passwords.
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
except ValidationError:
    pass

target_metadata = Base.metadata


def _configure(**kwargs: object) -> None:
    url = config.get_main_option("sqlalchemy.url") or ""
    # SQLite cannot ALTER most columns in place; batch mode recreates the table.
    context.configure(target_metadata=target_metadata, render_as_batch=is_sqlite_url(url), **kwargs)


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    asyncio.run(_migrate_online())
