"""
Deterministic hashing and JSON-safe serialization.

Document hashes back exact-duplicate detection; ``to_json_safe`` prepares
entity state for JSON columns (undo snapshots, activity details, outbox
metadata) so it round-trips without losing Decimal precision.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, (set, frozenset, tuple)):
        return sorted(obj) if isinstance(obj, (set, frozenset)) else list(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable handling of Decimal/UUID/datetime."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Return ``data`` reduced to plain JSON types (str, int, list, dict)."""
    return json.loads(_canonicalize_json(data))


def hash_document(content: bytes) -> str:
    """SHA-256 of raw document bytes, hex encoded."""
    return hashlib.sha256(content).hexdigest()
