from __future__ import annotations

import logging
from typing import Any, List, Optional

from .models import FeedItem
from .telegram_source import FeedProvider

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class MessageCursor:
    """
    Offset-addressable, cached view over a newest-first remote history.

    The buffer is always a gap-free prefix of the remote sequence: it only
    grows, by appending items that follow what is already cached. Once the
    remote returns a short page the cursor stops contacting it.
    """

    def __init__(self, provider: FeedProvider, identity: str, name: Optional[str] = None) -> None:
        self.provider = provider
        self.identity = identity
        self._name = name or identity
        self.end_of_history = False
        self.remote_fetches = 0
        self._buffer: List[FeedItem] = []
        self._peer: Optional[Any] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    async def ready(self) -> bool:
        if not self.provider.is_connected():
            await self.provider.connect()
        if self._peer is None:
            self._peer = await self.provider.resolve_peer(self.identity)
        return self._peer is not None and self.provider.is_connected()

    def has_more(self, offset: int) -> bool:
        return not self.end_of_history or offset < len(self._buffer)

    async def fetch_page(self, limit: int = PAGE_SIZE, offset: int = 0) -> List[FeedItem]:
        if not await self.ready():
            logger.warning("Source %s is not ready, returning no messages", self.identity)
            return []

        cached = len(self._buffer)
        if offset + limit <= cached or self.end_of_history:
            return self._buffer[offset:offset + limit]

        start = min(offset, cached)
        want = offset + limit - start
        logger.debug(
            "Getting messages for %s limit=%d offset=%d buffered=%d",
            self.identity,
            want,
            start,
            cached,
        )
        items = await self.provider.fetch_history(self._peer, want, start)
        self.remote_fetches += 1
        if len(items) < want:
            self.end_of_history = True
            logger.info("Reached end of history for %s after %d messages", self.identity, cached + len(items))
        self._buffer.extend(items[cached - start:])
        return self._buffer[offset:offset + limit]
