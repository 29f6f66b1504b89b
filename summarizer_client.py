from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class SummarizerClient:
    """
    Hands newly stored records to the summarization service.
    """

    def __init__(self, url: str, timeout: int = 10, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def submit(self, source: str, data: str) -> bool | None:
        """
        Send one record to the summarizer.

        Returns:
            True  -> the service accepted the record
            None  -> transport/HTTP error, caller should continue
        """
        try:
            resp = await self._client.post(self.url, json={"source": source, "data": data})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Summarizer request failed for %s: %s", source, exc)
            return None

        if resp.status_code != 200:
            logger.warning("Summarizer returned status %s for %s", resp.status_code, source)
            return None
        return True

    async def close(self) -> None:
        await self._client.aclose()
