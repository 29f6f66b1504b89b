from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import Record, StructuredRecord, TextRecord

logger = logging.getLogger(__name__)

SECTION_DELIMITER = "-----"
ANALYST_PREFIX = "AC:"
ANALYST_SECTION = "analyst comments"

# "-International Events-": a dash, one word, a space, one word, a dash
SUBSECTION_RE = re.compile(r"^-(\w+ \w+)-$")


class PayloadParser:
    name = "base"

    def parse(self, body: Optional[str]) -> List[Record]:  # pragma: no cover - interface
        raise NotImplementedError

    def __call__(self, body: Optional[str]) -> List[Record]:
        return self.parse(body)


class PassthroughParser(PayloadParser):
    name = "passthrough"

    def parse(self, body: Optional[str]) -> List[Record]:
        if body is None or not body.strip():
            return []
        return [TextRecord(text=body)]


class StructuredParser(PayloadParser):
    """
    Parse a wire-style report into one StructuredRecord.

    Layout::

        Key: value
        Other Key: value
        -----
        -International Events-
        Some event happened.
        AC: The analyst's note on it.

    An analyst comment starts at an "AC:" line and takes in the lines that
    follow it up to the next blank line or the next "AC:" line; a bare "AC:"
    takes its text from the next non-blank line. Every other non-blank line
    is content.

    Bodies without a metadata block, a delimiter or at least one subsection
    marker are skipped.
    """

    name = "structured"

    def parse(self, body: Optional[str]) -> List[Record]:
        if not body or SECTION_DELIMITER not in body:
            return []
        meta_raw, _, data_raw = body.partition(SECTION_DELIMITER)
        if not meta_raw.strip() or not data_raw.strip():
            return []

        metadata = parse_metadata(meta_raw)
        if not metadata:
            logger.debug("Skipping body without metadata pairs")
            return []

        sections = parse_sections(data_raw)
        if not sections:
            logger.debug("Skipping body without subsection markers")
            return []

        return [StructuredRecord(metadata=metadata, sections=sections)]


def parse_metadata(raw: str) -> Dict[str, str]:
    metadata: Dict[str, str] = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if not key:
            continue
        metadata[key] = value.strip()
    return metadata


def parse_sections(raw: str) -> Dict[str, List[Dict[str, Any]]]:
    sections: Dict[str, List[Dict[str, Any]]] = {}
    current: Optional[str] = None
    lines: List[str] = []

    for line in raw.splitlines():
        match = SUBSECTION_RE.match(line.strip())
        if match:
            if current is not None:
                sections[current] = _section_entries(current, lines)
            current = match.group(1)
            lines = []
        elif current is not None:
            lines.append(line)

    if current is not None:
        sections[current] = _section_entries(current, lines)
    return sections


def _section_entries(name: str, lines: Iterable[str]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    comments: List[str] = []
    open_comment: Optional[List[str]] = None

    def close_comment() -> None:
        nonlocal open_comment
        if open_comment:
            text = " ".join(open_comment)
            entries.append({"analystComment": text})
            comments.append(text)
        open_comment = None

    for raw in lines:
        line = raw.strip()
        if not line:
            # A bare "AC:" still waits for its text; a started comment ends here.
            if open_comment:
                close_comment()
            continue
        if line.startswith(ANALYST_PREFIX):
            close_comment()
            text = line[len(ANALYST_PREFIX):].strip()
            open_comment = [text] if text else []
        elif open_comment is not None:
            open_comment.append(line)
        else:
            entries.append({"content": line})
    close_comment()

    if comments and name.lower() == ANALYST_SECTION:
        entries.append({"analystComments": comments})
    return entries


def normalize_output(value: Any) -> List[Record]:
    """
    Coerce what a formatter returned into a flat list of records.

    Strings become TextRecords; mappings contribute every non-empty string
    leaf.
    """
    if value is None:
        return []
    if isinstance(value, (TextRecord, StructuredRecord)):
        return [value]
    if isinstance(value, str):
        return [TextRecord(text=value)] if value.strip() else []
    if isinstance(value, (list, tuple)):
        records: List[Record] = []
        for item in value:
            records.extend(normalize_output(item))
        return records
    if isinstance(value, Mapping):
        return [TextRecord(text=leaf) for leaf in _string_leaves(value)]
    raise TypeError(f"Unsupported formatter output: {type(value).__name__}")


def _string_leaves(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, Mapping):
        value = list(value.values())
    leaves: List[str] = []
    if isinstance(value, (list, tuple)):
        for item in value:
            leaves.extend(_string_leaves(item))
    return leaves


PARSERS = {
    PassthroughParser.name: PassthroughParser,
    StructuredParser.name: StructuredParser,
}


def get_parser(name: str) -> PayloadParser:
    try:
        return PARSERS[name]()
    except KeyError:
        raise ValueError(f"Unknown payload format: {name!r}") from None
