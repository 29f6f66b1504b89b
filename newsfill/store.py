"""
Content store for deduplicated records.

Each source gets its own table ``(hash TEXT PRIMARY KEY, data TEXT, date
TIMESTAMP)``. PostgresStore talks to PostgreSQL through an asyncpg pool;
MemoryStore keeps the same contract in process for dry runs and tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import asyncpg

from .errors import StoreConnectionError
from .models import StoredEntry

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 5  # seconds


def table_name_for(source_name: str) -> str:
    """Lower-case the source name and replace anything outside [a-z0-9_]."""
    name = re.sub(r"[^a-z0-9_]", "_", source_name.strip().lower())
    if not name:
        raise ValueError(f"Cannot derive a table name from {source_name!r}")
    return name


def _as_text(data: Any) -> str:
    if isinstance(data, str):
        return data
    return json.dumps(data, indent=2, ensure_ascii=False)


class ContentStore:
    async def connect(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def table_exists(self, table: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def create_table(self, table: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def hash_exists(self, table: str, hash_: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def insert(self, table: str, hash_: str, data: Any, date: datetime) -> bool:  # pragma: no cover
        raise NotImplementedError

    async def close(self) -> None:
        return None


class PostgresStore(ContentStore):
    def __init__(
        self,
        *,
        user: str,
        host: str,
        database: str,
        password: str = "",
        port: int = 5432,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_attempts: Optional[int] = None,
        max_pool_size: int = 5,
    ) -> None:
        self.user = user
        self.host = host
        self.database = database
        self.password = password
        self.port = port
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.max_pool_size = max_pool_size
        self._pool: Any = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """
        Create the connection pool, retrying until it succeeds.

        Only one attempt is in flight at a time; callers that arrive while it
        runs wait for it and reuse the pool it created.
        """
        if self._pool is not None:
            return
        async with self._connect_lock:
            if self._pool is not None:
                return
            attempt = 0
            while True:
                attempt += 1
                try:
                    self._pool = await asyncpg.create_pool(
                        user=self.user,
                        host=self.host,
                        database=self.database,
                        password=self.password or None,
                        port=self.port,
                        min_size=1,
                        max_size=self.max_pool_size,
                    )
                except Exception as exc:  # noqa: BLE001
                    if self.max_attempts is not None and attempt >= self.max_attempts:
                        logger.error("Giving up on database after %d attempts: %s", attempt, exc)
                        raise StoreConnectionError(
                            f"Could not connect to {self.host}:{self.port}/{self.database}"
                        ) from exc
                    logger.warning(
                        "Error connecting to database (attempt %d): %s. Retrying in %ss",
                        attempt,
                        exc,
                        self.retry_delay,
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                logger.info("Connected to database %s at %s:%s", self.database, self.host, self.port)
                return

    async def table_exists(self, table: str) -> bool:
        await self.connect()
        exists = await self._pool.fetchval(
            "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = $1)",
            table_name_for(table),
        )
        return bool(exists)

    async def create_table(self, table: str) -> None:
        await self.connect()
        name = table_name_for(table)
        await self._pool.execute(
            f'CREATE TABLE IF NOT EXISTS "{name}" (hash TEXT PRIMARY KEY, data TEXT, date TIMESTAMP)'
        )
        logger.info("Created table %s", name)

    async def hash_exists(self, table: str, hash_: str) -> bool:
        await self.connect()
        name = table_name_for(table)
        exists = await self._pool.fetchval(
            f'SELECT EXISTS (SELECT FROM "{name}" WHERE hash = $1)',
            hash_,
        )
        return bool(exists)

    async def insert(self, table: str, hash_: str, data: Any, date: datetime) -> bool:
        """Insert a row unless the hash is already stored. Returns True if a row was added."""
        await self.connect()
        name = table_name_for(table)
        # TIMESTAMP columns take naive values; store them as UTC.
        if date.tzinfo is not None:
            date = date.astimezone(timezone.utc).replace(tzinfo=None)
        status = await self._pool.execute(
            f'INSERT INTO "{name}" (hash, data, date) VALUES ($1, $2, $3) ON CONFLICT (hash) DO NOTHING',
            hash_,
            _as_text(data),
            date,
        )
        return str(status).endswith(" 1")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


class MemoryStore(ContentStore):
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, StoredEntry]] = {}
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        return None

    async def table_exists(self, table: str) -> bool:
        return table_name_for(table) in self.tables

    async def create_table(self, table: str) -> None:
        self.tables.setdefault(table_name_for(table), {})

    async def hash_exists(self, table: str, hash_: str) -> bool:
        return hash_ in self.tables.get(table_name_for(table), {})

    async def insert(self, table: str, hash_: str, data: Any, date: datetime) -> bool:
        async with self._lock:
            rows = self.tables.setdefault(table_name_for(table), {})
            if hash_ in rows:
                return False
            rows[hash_] = StoredEntry(hash=hash_, data=_as_text(data), date=date)
            return True

    def rows(self, table: str) -> Dict[str, StoredEntry]:
        return self.tables.get(table_name_for(table), {})
