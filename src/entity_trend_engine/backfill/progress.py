"""Single-line stderr progress for long backfills.

Stdout carries the JSON summary, so progress only ever goes to stderr and
is only drawn when stderr is a terminal.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from typing import TextIO

BAR_WIDTH = 22


def _format_eta(seconds: float | None) -> str:
    if seconds is None or not 0 <= seconds < float("inf"):
        return "ETA ?"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"ETA {hours}:{minutes:02d}:{secs:02d}"
    return f"ETA {minutes}:{secs:02d}"


def _bar(fraction: float) -> str:
    filled = round(max(0.0, min(1.0, fraction)) * BAR_WIDTH)
    return f"[{'#' * filled:-<{BAR_WIDTH}}]"


@dataclass
class ProgressLine:
    """Rate-limited, self-overwriting status line for a backfill run."""

    enabled: bool
    min_interval_s: float = 0.20
    stream: TextIO = field(default_factory=lambda: sys.stderr)

    def __post_init__(self) -> None:
        self._started = time.monotonic()
        self._drawn_at = 0.0
        self._width = 0

    def _draw(self, text: str, *, end: str = "") -> None:
        # Pad with spaces so a shorter line fully covers the previous one.
        self.stream.write("\r" + text.ljust(self._width) + end)
        self.stream.flush()
        self._width = 0 if end else len(text)

    def update(
        self,
        *,
        dates_done: int,
        dates_total: int,
        rows_written: int,
        rows_failed: int,
    ) -> None:
        if not self.enabled:
            return
        now = time.monotonic()
        finished = dates_done >= dates_total
        if not finished and now - self._drawn_at < self.min_interval_s:
            return
        self._drawn_at = now

        fraction = dates_done / max(1, dates_total)
        per_second = dates_done / max(1e-6, now - self._started)
        eta = (dates_total - dates_done) / per_second if per_second > 0 else None
        self._draw(
            f"backfill {_bar(fraction)} {fraction:6.1%} dates={dates_done:,}/{dates_total:,} "
            f"rows={rows_written:,} failed={rows_failed:,} {_format_eta(eta)}"
        )

    def close(self, *, final_line: str | None = None) -> None:
        if self.enabled:
            self._draw(final_line or "", end="\n")


def default_progress_enabled() -> bool:
    isatty = getattr(sys.stderr, "isatty", None)
    return bool(isatty and isatty())
