from __future__ import annotations

from datetime import date


class NewsfillError(Exception):
    """Base class for errors raised by the backfill pipeline."""


class ConfigError(NewsfillError):
    pass


class StoreConnectionError(NewsfillError):
    pass


class BackfillError(NewsfillError):
    """A single day of a source's backfill failed; the run stopped there."""

    def __init__(self, source: str, day: date, cause: BaseException | None = None) -> None:
        self.source = source
        self.day = day
        self.cause = cause
        msg = f"Backfill of {source} failed on {day.isoformat()}"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)
