"""Error taxonomy for the trend-scoring engine.

Row-level errors (invalid input, insufficient history, persistence) are
contained by the backfill orchestrator and aggregated into the run summary.
Only schema failures and store connectivity failures propagate to the caller.
"""

from __future__ import annotations

from datetime import date


class EngineError(Exception):
    """Base class for all engine errors."""


class SourceUnavailableError(EngineError):
    """Raised when the raw stat source cannot be reached (retryable)."""

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        stat_date: date | None = None,
        last_exception: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.stat_date = stat_date
        self.last_exception = last_exception


class InvalidInputError(EngineError):
    """Raised when raw input data is malformed (negative or missing values)."""

    def __init__(self, message: str, *, entity_id: int | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class InsufficientHistoryError(EngineError):
    """Raised when today's raw inputs for an entity are missing."""

    def __init__(self, message: str, *, entity_id: int | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class SchemaApplicationError(EngineError):
    """Raised when a schema change fails for a reason other than already being applied."""

    def __init__(self, message: str, *, change_name: str | None = None) -> None:
        super().__init__(message)
        self.change_name = change_name


class RowPersistenceError(EngineError):
    """Raised when a single row cannot be written to the store."""

    def __init__(
        self,
        message: str,
        *,
        entity_id: int | None = None,
        stat_date: date | None = None,
    ) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.stat_date = stat_date


class StoreUnavailableError(EngineError):
    """Raised when the persistent store connection is lost."""
