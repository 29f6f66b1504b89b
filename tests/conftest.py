from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional

import pytest

from newsfill.models import FeedItem
from newsfill.telegram_source import FeedProvider


def ts(day: date, hour: int = 0, minute: int = 0) -> int:
    return int(datetime.combine(day, time(hour, minute), tzinfo=timezone.utc).timestamp())


def hourly_feed(last_day: date, days: int, per_day: int = 24) -> List[FeedItem]:
    """Newest-first feed with ``per_day`` evenly spread messages on each day."""
    step = 24 // per_day
    items: List[FeedItem] = []
    for d in range(days):
        day = last_day - timedelta(days=d)
        for h in reversed(range(0, 24, step)):
            items.append(FeedItem(timestamp=ts(day, h), body=f"{day.isoformat()} {h:02d}:00"))
    return items


class FakeProvider(FeedProvider):
    def __init__(self, items: List[FeedItem], *, connected: bool = True, resolvable: bool = True) -> None:
        self.items = list(items)
        self.connected = connected
        self.resolvable = resolvable
        self.calls: List[tuple] = []
        self.sent: List[tuple] = []

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def resolve_peer(self, identity: str) -> Optional[Any]:
        return identity if self.resolvable else None

    async def fetch_history(self, peer: Any, limit: int, offset: int) -> List[FeedItem]:
        self.calls.append((limit, offset))
        return self.items[offset:offset + limit]

    async def send_message(self, peer: Any, text: str) -> Any:
        self.sent.append((peer, text))
        return True


@pytest.fixture
def day0() -> date:
    return date(2024, 3, 10)
