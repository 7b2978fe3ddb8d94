"""
Canonical encoding for signed payloads
Sorted keys and compact separators, so equal payloads always sign to equal bytes
"""

import hashlib
import json
from typing import Any, Union


def canonical_json(data: Any) -> str:
    """
    Encode JSON-compatible data deterministically

    Non-ASCII text is kept as UTF-8 rather than escaped. NaN and infinities
    are rejected with ValueError.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def canonical_bytes(data: Any) -> bytes:
    return canonical_json(data).encode("utf-8")


def stable_hash(data: Union[str, bytes]) -> str:
    """Hex SHA-256 of text (UTF-8) or raw bytes"""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()
