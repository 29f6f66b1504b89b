from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from config_loader import Settings, check_unique_tables, get_settings, load_sources
from newsfill.cursor import MessageCursor
from newsfill.errors import NewsfillError
from newsfill.models import SourceConfig
from newsfill.orchestrator import BackfillOrchestrator, BackfillReport
from newsfill.payload_parser import get_parser
from newsfill.store import ContentStore, MemoryStore, PostgresStore
from newsfill.telegram_source import FeedProvider, TelegramFeedProvider, build_client, start_client
from summarizer_client import SummarizerClient


def build_store(settings: Settings) -> ContentStore:
    if settings.store_backend == "memory":
        return MemoryStore()
    return PostgresStore(
        user=settings.db_user,
        host=settings.db_host,
        database=settings.db_name,
        password=settings.db_pass,
        port=settings.db_port,
        retry_delay=settings.db_retry_delay,
        max_attempts=settings.db_max_attempts,
    )


async def backfill_sources(
    sources: List[SourceConfig],
    store: ContentStore,
    provider: FeedProvider,
    settings: Settings,
    summarizer: Optional[SummarizerClient] = None,
) -> List[BackfillReport | BaseException]:
    check_unique_tables(sources)
    orchestrators = [
        BackfillOrchestrator(
            store,
            MessageCursor(provider, source.peer, name=source.name),
            settings.start_date,
            formatter=get_parser(source.format),
            tz=settings.tz,
            summarizer=summarizer,
            refill_existing=settings.refill_existing,
        )
        for source in sources
    ]
    return await asyncio.gather(*(o.run() for o in orchestrators), return_exceptions=True)


async def main() -> int:
    load_dotenv()
    try:
        settings = get_settings()
        sources = load_sources(settings.sources_file)
    except NewsfillError as exc:
        setup_logging("INFO")
        logging.error("Invalid configuration: %s", exc)
        return 1
    setup_logging(settings.log_level)
    logging.info("Backfill started, start date %s", settings.start_date)

    if not sources:
        logging.warning("No enabled sources in %s", settings.sources_file)
        return 0

    store = build_store(settings)
    summarizer = SummarizerClient(settings.summarizer_url, settings.request_timeout) if settings.summarizer_url else None
    client = build_client(settings.api_id, settings.api_hash, settings.session_file)
    failed = 0
    try:
        await start_client(client, settings.session_file)
        results = await backfill_sources(sources, store, TelegramFeedProvider(client), settings, summarizer)
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                failed += 1
                logging.error("Source %s failed: %s", source.name, result)
            else:
                logging.info(
                    "Source %s %s: %d inserted over %d days",
                    source.name,
                    result.state.value,
                    result.inserted,
                    result.days,
                )
    finally:
        await store.close()
        if summarizer is not None:
            await summarizer.close()
        await client.disconnect()
    return 1 if failed else 0


def setup_logging(level: str) -> None:
    numeric = getattr(logging, level, logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
