"""Configuration management with Pydantic Settings.

This module provides centralized configuration for the trend-scoring
engine, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)",
    )
    max_overflow: int = Field(
        default=10,
        alias="DATABASE_MAX_OVERFLOW",
        ge=0,
        le=100,
        description="Maximum overflow connections (ignored for SQLite)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class TrendSettings(BaseSettings):
    """Trend scoring constants."""

    model_config = SettingsConfigDict(env_prefix="TREND_", extra="ignore")

    cap_steps: int = Field(
        default=10,
        alias="TREND_CAP_STEPS",
        ge=1,
        le=1000,
        description="Maximum rank steps counted towards the trend multiplier",
    )
    step_weight: float = Field(
        default=0.05,
        alias="TREND_STEP_WEIGHT",
        ge=0.0,
        le=1.0,
        description="Multiplier change per rank step gained or lost",
    )
    min_multiplier: float = Field(
        default=0.5,
        alias="TREND_MIN_MULTIPLIER",
        gt=0.0,
        le=1.0,
        description="Lower bound of the trend multiplier",
    )
    max_multiplier: float = Field(
        default=2.0,
        alias="TREND_MAX_MULTIPLIER",
        ge=1.0,
        le=100.0,
        description="Upper bound of the trend multiplier",
    )
    window_days: int = Field(
        default=7,
        alias="TREND_WINDOW_DAYS",
        ge=1,
        le=365,
        description="Trailing window (calendar days, including today) for velocity/consistency",
    )
    consistency_epsilon: float = Field(
        default=1e-9,
        alias="TREND_CONSISTENCY_EPSILON",
        gt=0.0,
        description="Guard added to the mean in the coefficient-of-variation term",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> TrendSettings:
        if self.min_multiplier > self.max_multiplier:
            raise ValueError("TREND_MIN_MULTIPLIER must be <= TREND_MAX_MULTIPLIER")
        return self


class BackfillSettings(BaseSettings):
    """Backfill orchestration settings."""

    model_config = SettingsConfigDict(env_prefix="BACKFILL_", extra="ignore")

    max_concurrency: int = Field(
        default=8,
        alias="BACKFILL_MAX_CONCURRENCY",
        ge=1,
        le=256,
        description="Max in-flight row operations per category",
    )
    max_parallel_categories: int = Field(
        default=5,
        alias="BACKFILL_MAX_PARALLEL_CATEGORIES",
        ge=1,
        le=16,
        description="Max categories backfilled at once",
    )
    source_max_retries: int = Field(
        default=3,
        alias="BACKFILL_SOURCE_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries for a raw-source fetch before the date is recorded as a gap",
    )
    source_retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="BACKFILL_SOURCE_RETRY_BASE_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Base delay in seconds (doubles with each retry)",
    )
    strict: bool = Field(
        default=False,
        alias="BACKFILL_STRICT",
        description="Exit non-zero when any row failed or any date was skipped",
    )
    category_lock_enabled: bool = Field(
        default=False,
        alias="BACKFILL_CATEGORY_LOCK_ENABLED",
        description="Hold a Redis lease per category so only one process backfills it",
    )
    category_lock_ttl_seconds: int = Field(
        default=3600,
        alias="BACKFILL_CATEGORY_LOCK_TTL_SECONDS",
        ge=10,
        le=7 * 24 * 3600,
        description="Lease TTL for the per-category lock",
    )
    timezone: str = Field(
        default="UTC",
        alias="BACKFILL_TIMEZONE",
        description="IANA timezone defining day boundaries (e.g. America/Los_Angeles)",
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"BACKFILL_TIMEZONE is not a known timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from entity_trend_engine.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.trend.window_days)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    trend: TrendSettings = Field(
        default_factory=lambda: TrendSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backfill: BackfillSettings = Field(
        default_factory=lambda: BackfillSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "trend": {
                "cap_steps": str(self.trend.cap_steps),
                "step_weight": str(self.trend.step_weight),
                "min_multiplier": str(self.trend.min_multiplier),
                "max_multiplier": str(self.trend.max_multiplier),
                "window_days": str(self.trend.window_days),
            },
            "backfill": {
                "max_concurrency": str(self.backfill.max_concurrency),
                "max_parallel_categories": str(self.backfill.max_parallel_categories),
                "source_max_retries": str(self.backfill.source_max_retries),
                "strict": str(self.backfill.strict),
                "category_lock_enabled": str(self.backfill.category_lock_enabled),
                "timezone": self.backfill.timezone,
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
