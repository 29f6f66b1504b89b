from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, List, Optional

from telethon import TelegramClient
from telethon.errors.rpcerrorlist import UsernameInvalidError, UsernameNotOccupiedError
from telethon.sessions import StringSession

from .models import FeedItem

logger = logging.getLogger(__name__)

CONNECTION_RETRIES = 5


class FeedProvider:
    """Reverse-chronological message history of a remote channel."""

    def is_connected(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def connect(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def resolve_peer(self, identity: str) -> Optional[Any]:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_history(self, peer: Any, limit: int, offset: int) -> List[FeedItem]:  # pragma: no cover
        raise NotImplementedError

    async def send_message(self, peer: Any, text: str) -> Any:  # pragma: no cover - interface
        raise NotImplementedError


class TelegramFeedProvider(FeedProvider):
    def __init__(self, client: TelegramClient) -> None:
        self.client = client

    def is_connected(self) -> bool:
        return bool(self.client.is_connected())

    async def connect(self) -> None:
        if not self.client.is_connected():
            await self.client.connect()

    async def resolve_peer(self, identity: str) -> Optional[Any]:
        await self.connect()
        try:
            return await self.client.get_entity(identity)
        except (UsernameInvalidError, UsernameNotOccupiedError, ValueError) as exc:
            logger.warning("Channel %s could not be resolved: %s", identity, exc)
            return None

    async def fetch_history(self, peer: Any, limit: int, offset: int) -> List[FeedItem]:
        await self.connect()
        logger.debug("Fetching history limit=%d offset=%d", limit, offset)
        messages = await self.client.get_messages(peer, limit=limit, add_offset=offset)
        # One item per message so offsets stay aligned with the remote history.
        # Undated messages borrow the nearest known timestamp on the page.
        stamps = [int(msg.date.timestamp()) if msg.date is not None else None for msg in messages]
        known = [stamp for stamp in stamps if stamp is not None]
        last = known[0] if known else int(time.time())
        items: List[FeedItem] = []
        for msg, stamp in zip(messages, stamps):
            if stamp is None:
                stamp = last
            last = stamp
            items.append(FeedItem(timestamp=stamp, body=msg.message or ""))
        return items

    async def send_message(self, peer: Any, text: str) -> Any:
        await self.connect()
        return await self.client.send_message(peer, text)


def load_session(path: Path) -> StringSession:
    if not path.exists():
        return StringSession()
    logger.info("Loading saved session from %s", path)
    raw = path.read_text(encoding="utf-8").strip()
    try:
        return StringSession(raw)
    except ValueError as exc:
        logger.warning("Error loading session, starting a new one: %s", exc)
        return StringSession()


def save_session(client: TelegramClient, path: Path) -> None:
    session = client.session.save()
    if path.exists() and path.read_text(encoding="utf-8").strip() == session:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(session, encoding="utf-8")
    logger.info("Saved session to %s", path)


def build_client(api_id: int, api_hash: str, session_file: Path) -> TelegramClient:
    return TelegramClient(
        load_session(session_file),
        api_id,
        api_hash,
        connection_retries=CONNECTION_RETRIES,
    )


async def start_client(client: TelegramClient, session_file: Path) -> TelegramClient:
    """Log in (prompting on the terminal the first time) and persist the session."""
    logger.info("Connecting to Telegram...")
    await client.start()
    if not client.is_connected():
        await client.connect()
    save_session(client, session_file)
    return client
