"""
Day-by-day historical backfill of one source into its own table.

A run checks for the table, creates it when missing, then walks from today
back to the start date (inclusive). Each day's messages are parsed, hashed and
stored unless the hash is already present, so re-running is always safe.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional

from .cursor import MessageCursor
from .errors import BackfillError
from .extractor import Formatter, get_data_for_date
from .hashing import content_hash
from .store import ContentStore, table_name_for

logger = logging.getLogger(__name__)


class BackfillState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    TABLE_CHECK = "table-check"
    CREATE_AND_FILL = "create-table-and-fill"
    FILL_ONLY = "fill-only"
    SKIPPED = "skipped"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BackfillReport:
    source: str
    table: str
    days: int = 0
    inserted: int = 0
    skipped: int = 0
    state: BackfillState = BackfillState.UNINITIALIZED


class BackfillOrchestrator:
    def __init__(
        self,
        store: ContentStore,
        cursor: MessageCursor,
        start_date: date,
        *,
        formatter: Optional[Formatter] = None,
        tz: tzinfo = timezone.utc,
        summarizer: Optional[Any] = None,
        refill_existing: bool = True,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.store = store
        self.cursor = cursor
        self.start_date = start_date
        self.formatter = formatter
        self.tz = tz
        self.summarizer = summarizer
        self.refill_existing = refill_existing
        self._today = today or (lambda: datetime.now(tz=self.tz).date())
        self._stop = asyncio.Event()
        self.state = BackfillState.UNINITIALIZED
        self.report = BackfillReport(source=cursor.name, table=table_name_for(cursor.name))

    @property
    def table(self) -> str:
        return self.report.table

    def stop(self) -> None:
        """Ask the run to finish after the day it is currently filling."""
        self._stop.set()

    def _set_state(self, state: BackfillState) -> None:
        logger.debug("%s: %s -> %s", self.table, self.state.value, state.value)
        self.state = state
        self.report.state = state

    async def run(self) -> BackfillReport:
        self._set_state(BackfillState.TABLE_CHECK)
        if not await self.store.table_exists(self.table):
            self._set_state(BackfillState.CREATE_AND_FILL)
            await self.store.create_table(self.table)
        elif self.refill_existing:
            self._set_state(BackfillState.FILL_ONLY)
        else:
            logger.info("Table %s already exists, skipping backfill", self.table)
            self._set_state(BackfillState.SKIPPED)
            return self.report

        await self.fill_table()
        self._set_state(BackfillState.DONE)
        logger.info(
            "Finished %s: %d days, %d inserted, %d already stored",
            self.table,
            self.report.days,
            self.report.inserted,
            self.report.skipped,
        )
        return self.report

    async def fill_table(self) -> None:
        day = self._today()
        logger.info("Filling table %s from %s back to %s", self.table, day, self.start_date)
        while day >= self.start_date:
            if self._stop.is_set():
                logger.info("Stop requested, leaving %s before %s", self.table, day)
                break
            try:
                await self.fill_day(day)
            except Exception as exc:
                self._set_state(BackfillState.FAILED)
                logger.error("Filling table %s failed on %s: %s", self.table, day, exc)
                raise BackfillError(self.cursor.name, day, exc) from exc
            day -= timedelta(days=1)

    async def fill_day(self, day: date) -> int:
        logger.info("Filling table %s on %s", self.table, day)
        records = await get_data_for_date(self.cursor, day, self.tz, self.formatter)
        stamp = datetime.combine(day, time.min, tzinfo=self.tz)
        inserted = 0
        for record in records:
            data = record.serialize()
            hash_ = content_hash(data)
            if await self.store.hash_exists(self.table, hash_):
                self.report.skipped += 1
                continue
            if not await self.store.insert(self.table, hash_, data, stamp):
                self.report.skipped += 1
                continue
            inserted += 1
            if self.summarizer is not None:
                try:
                    await self.summarizer.submit(self.cursor.name, data)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Summarizer hand-off failed for %s on %s: %s", self.table, day, exc)
        self.report.days += 1
        self.report.inserted += inserted
        return inserted
