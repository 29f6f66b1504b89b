from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import date, timezone as dt_timezone, tzinfo
from pathlib import Path
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from newsfill.errors import ConfigError
from newsfill.models import SourceConfig
from newsfill.payload_parser import PARSERS
from newsfill.store import table_name_for

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent
DEFAULT_SOURCES_PATH = ROOT_DIR / "config" / "sources.json"


@dataclass(frozen=True)
class Settings:
    api_id: int
    api_hash: str
    db_user: str
    db_host: str
    db_name: str
    db_pass: str
    db_port: int
    start_date: date
    timezone: str = "UTC"
    session_file: Path = Path("session.txt")
    sources_file: Path = DEFAULT_SOURCES_PATH
    store_backend: str = "postgres"
    db_retry_delay: int = 5
    db_max_attempts: Optional[int] = None
    refill_existing: bool = True
    summarizer_url: str = ""
    request_timeout: int = 10
    log_level: str = "INFO"

    @property
    def tz(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return dt_timezone.utc
        return ZoneInfo(self.timezone)


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_start_date(raw: Optional[str]) -> date:
    if not raw:
        raise ConfigError("START_DATE is required")
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError as exc:
        raise ConfigError(f"START_DATE is not an ISO date: {raw!r}") from exc


def get_settings() -> Settings:
    max_attempts = env_int("DB_MAX_ATTEMPTS", 0)
    settings = Settings(
        api_id=env_int("API_ID", 0),
        api_hash=os.getenv("API_HASH", ""),
        db_user=os.getenv("DB_USER", "postgres"),
        db_host=os.getenv("DB_HOST", "localhost"),
        db_name=os.getenv("DB_NAME", "postgres"),
        db_pass=os.getenv("DB_PASS", ""),
        db_port=env_int("DB_PORT", 5432),
        start_date=_parse_start_date(os.getenv("START_DATE")),
        timezone=os.getenv("TIMEZONE", "UTC"),
        session_file=Path(os.getenv("SESSION_FILE", "session.txt")),
        sources_file=Path(os.getenv("SOURCES_FILE", str(DEFAULT_SOURCES_PATH))),
        store_backend=os.getenv("STORE_BACKEND", "postgres").strip().lower(),
        db_retry_delay=env_int("DB_RETRY_DELAY", 5),
        db_max_attempts=max_attempts if max_attempts > 0 else None,
        refill_existing=env_bool("REFILL_EXISTING", True),
        summarizer_url=os.getenv("SUMMARIZER_URL", "").strip(),
        request_timeout=env_int("REQUEST_TIMEOUT", 10),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    if not settings.api_id or not settings.api_hash:
        raise ConfigError("API_ID and API_HASH are required")
    if settings.store_backend not in ("postgres", "memory"):
        raise ConfigError(f"Unknown STORE_BACKEND: {settings.store_backend}")
    try:
        settings.tz
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown TIMEZONE: {settings.timezone}") from exc
    return settings


def load_sources(config_path: Path = DEFAULT_SOURCES_PATH) -> List[SourceConfig]:
    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read sources from {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path} must hold an object with a 'sources' list")

    sources: List[SourceConfig] = []
    for item in raw.get("sources", []):
        if not item.get("enabled", True):
            continue
        try:
            source = SourceConfig(
                name=item["name"],
                peer=item.get("peer", ""),
                format=item.get("format", "passthrough"),
                enabled=True,
            )
        except KeyError as exc:
            logger.warning("Skipping source missing key %s: %s", exc, item)
            continue
        if source.format not in PARSERS:
            raise ConfigError(f"Source {source.name} has unknown format {source.format!r}")
        sources.append(source)
    check_unique_tables(sources)
    return sources


def check_unique_tables(sources: List[SourceConfig]) -> None:
    """Every source must map to its own table."""
    tables: Dict[str, str] = {}
    for source in sources:
        try:
            table = table_name_for(source.name)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        if table in tables:
            raise ConfigError(f"Sources {tables[table]!r} and {source.name!r} would share table {table!r}")
        tables[table] = source.name
