"""
Deterministic hashing utilities.

Audit entries are chained by hash, so every value that reaches a payload
must serialize the same way on every run.  This module provides the
canonical JSON form and the hashing functions built on it.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, and UUID/datetime/Enum/Decimal values
    are rendered through ``_json_serializer``.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_jsonable(data: Any) -> Any:
    """Round-trip through canonical JSON so a value fits a JSON column unchanged."""
    if data is None:
        return None
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Compute the hex SHA-256 of a payload's canonical JSON."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_entry(
    object_type: str,
    object_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for an audit entry.

    The hash covers the key fields plus the previous entry's hash,
    creating a tamper-evident chain.

    Args:
        object_type: Type of object being audited.
        object_id: ID of the object.
        action: Action being recorded.
        payload_hash: Hash of the entry payload.
        prev_hash: Hash of the previous entry (None for genesis).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        object_type,
        str(object_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
