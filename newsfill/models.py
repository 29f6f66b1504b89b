from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Union


@dataclass
class SourceConfig:
    name: str
    peer: str = ""
    format: str = "passthrough"  # "passthrough" or "structured"
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.peer:
            self.peer = self.name


@dataclass(frozen=True)
class FeedItem:
    timestamp: int
    body: str = ""


def _canonical(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True)
class TextRecord:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text}

    def serialize(self) -> str:
        return _canonical(self.to_dict())


@dataclass
class StructuredRecord:
    metadata: Dict[str, str] = field(default_factory=dict)
    sections: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata": self.metadata, "sections": self.sections}

    def serialize(self) -> str:
        return _canonical(self.to_dict())


Record = Union[TextRecord, StructuredRecord]


@dataclass(frozen=True)
class StoredEntry:
    hash: str
    data: str
    date: datetime

    def __post_init__(self) -> None:
        # Keep stored dates timezone-aware so comparisons stay consistent.
        if self.date.tzinfo is None:
            object.__setattr__(self, "date", self.date.replace(tzinfo=timezone.utc))
