from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Callable, List, Optional, Tuple

from .cursor import PAGE_SIZE, MessageCursor
from .models import Record
from .payload_parser import PassthroughParser, normalize_output

logger = logging.getLogger(__name__)

Formatter = Callable[[str], Any]


def day_bounds(day: date, tz: tzinfo) -> Tuple[int, int]:
    """Epoch seconds of [start of day, start of next day) in the given zone."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return int(start.timestamp()), int(end.timestamp())


async def collect_bodies(
    cursor: MessageCursor,
    day: date,
    tz: tzinfo,
    page_size: int = PAGE_SIZE,
) -> List[str]:
    start, end = day_bounds(day, tz)
    bodies: List[str] = []
    offset = 0
    while True:
        page = await cursor.fetch_page(page_size, offset)
        if not page:
            break

        past_date = False
        for item in page:
            if item.timestamp < start:
                past_date = True
                break
            if item.timestamp < end:
                bodies.append(item.body)

        if past_date or page[-1].timestamp < start:
            break
        offset += page_size
        if not cursor.has_more(offset):
            break
    return bodies


async def get_data_for_date(
    cursor: MessageCursor,
    day: date,
    tz: tzinfo,
    formatter: Optional[Formatter] = None,
    page_size: int = PAGE_SIZE,
) -> List[Record]:
    """Records parsed from every message posted on ``day``, newest first."""
    formatter = formatter or PassthroughParser()
    bodies = await collect_bodies(cursor, day, tz, page_size=page_size)
    records: List[Record] = []
    for body in bodies:
        records.extend(normalize_output(formatter(body)))
    logger.debug("%s: %d messages, %d records on %s", cursor.name, len(bodies), len(records), day)
    return records
