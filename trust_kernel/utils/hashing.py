"""
Deterministic hashing utilities.

All hashing in the trust kernel must be deterministic and reproducible.
Audit outbox payloads are hashed when enqueued and re-checked before
delivery; regulatory exports carry a digest over their records.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported (float never reaches
            here; it is native JSON and is rejected earlier by Money).
    """
    if isinstance(obj, Decimal):
        # Plain notation, never exponent form: Decimal("1E+2") -> "100"
        return format(obj, "f")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_records(records: list[dict]) -> str:
    """
    Digest over an ordered list of records.

    Each record is hashed on its own and the digests are chained, so
    reordering, dropping or editing any record changes the result.
    """
    running = hashlib.sha256(b"TRUST_EXPORT")
    for record in records:
        running.update(hash_payload(record).encode("ascii"))
    return running.hexdigest()
