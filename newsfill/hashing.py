from __future__ import annotations

import hashlib


def content_hash(data: str) -> str:
    """Hex SHA-512 of the UTF-8 encoded text. Stable across processes."""
    return hashlib.sha512(data.encode("utf-8")).hexdigest()
