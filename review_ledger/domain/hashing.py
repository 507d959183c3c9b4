"""
Deterministic hashing for chain blocks.

All content hashes must be reproducible from the stored row alone, by this
process or by any other implementation of the same canonical form.  This
module is the single place that defines that form.

Canonical form v1 (``"rl/1"``)
------------------------------
A compact JSON array, ASCII-escaped, encoded as UTF-8::

    ["rl/1", id, movie_title, review_text, rating, author_id,
     created_at, previous_hash]

- ``id``, ``rating``, ``author_id``: JSON integers (decimal digits).
- ``movie_title``, ``review_text``, ``previous_hash``: JSON strings.
- ``created_at``: UTC, ISO-8601, fixed microsecond precision, ``Z`` suffix,
  e.g. ``"2024-01-01T12:00:00.000000Z"``.

Field order is fixed.  No field may be omitted; ``None`` is treated as
missing.  Any change to the field list or encoding requires a new version.
"""

import hashlib
import json
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from review_ledger.domain.records import (
    CANONICAL_FIELDS,
    GENESIS_PREVIOUS_HASH,
    ReviewRecord,
)
from review_ledger.exceptions import InvalidFieldError, MissingFieldError

CANONICAL_VERSION = 1
CANONICAL_TAG = "rl/1"

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")

# Mapping keys accepted from the CRUD layer in addition to the field names.
_FIELD_ALIASES: dict[str, str] = {
    "movie_title": "movieTitle",
    "review_text": "reviewText",
    "author_id": "authorId",
    "created_at": "createdAt",
}

_INT_FIELDS = frozenset({"id", "rating", "author_id"})
_TEXT_FIELDS = frozenset({"movie_title", "review_text"})


def is_hex_digest(value: Any) -> bool:
    """True iff ``value`` is 64 lowercase hex characters."""
    return isinstance(value, str) and _HEX_DIGEST.match(value) is not None


def is_valid_link_value(value: Any) -> bool:
    """True iff ``value`` may appear as a block's ``previous_hash``."""
    return value == GENESIS_PREVIOUS_HASH or is_hex_digest(value)


def format_timestamp(value: datetime) -> str:
    """
    Render a timestamp in canonical form.

    Raises:
        InvalidFieldError: If ``value`` is naive (no tzinfo).
    """
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidFieldError(
            "created_at", value, "timestamp must be timezone-aware"
        )
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _read_field(record: ReviewRecord | Mapping[str, Any], name: str) -> Any:
    if isinstance(record, Mapping):
        if name in record:
            return record[name]
        alias = _FIELD_ALIASES.get(name)
        if alias is not None and alias in record:
            return record[alias]
        return None
    return getattr(record, name, None)


def _canonical_value(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        # bool is an int subclass; True must not hash like 1
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidFieldError(name, value, "expected an integer")
        return value
    if name in _TEXT_FIELDS:
        if not isinstance(value, str):
            raise InvalidFieldError(name, value, "expected a string")
        return value
    if name == "created_at":
        if not isinstance(value, datetime):
            raise InvalidFieldError(name, value, "expected a datetime")
        return format_timestamp(value)
    raise InvalidFieldError(name, value, "not a canonical field")


def canonicalize(
    record: ReviewRecord | Mapping[str, Any],
    previous_hash: str | None,
) -> bytes:
    """
    Produce the canonical byte form of a record and its link value.

    Args:
        record: ReviewRecord, or a mapping keyed by field name (camelCase
            aliases accepted).
        previous_hash: The block's link value ("0" or a 64-char hex digest).

    Returns:
        UTF-8 bytes of the canonical JSON array.

    Raises:
        MissingFieldError: If any field (or ``previous_hash``) is absent.
        InvalidFieldError: If any field has the wrong type or format.
    """
    record_id = _read_field(record, "id")
    components: list[Any] = [CANONICAL_TAG]

    for name in CANONICAL_FIELDS:
        value = _read_field(record, name)
        if value is None:
            raise MissingFieldError(name, record_id)
        components.append(_canonical_value(name, value))

    if previous_hash is None:
        raise MissingFieldError("previous_hash", record_id)
    if not is_valid_link_value(previous_hash):
        raise InvalidFieldError(
            "previous_hash",
            previous_hash,
            f"expected '{GENESIS_PREVIOUS_HASH}' or 64 lowercase hex characters",
        )
    components.append(previous_hash)

    return json.dumps(
        components,
        separators=(",", ":"),
        ensure_ascii=True,
    ).encode("utf-8")


def digest(data: bytes) -> str:
    """
    Compute SHA-256 of ``data``.

    Returns:
        Hex-encoded SHA-256 hash (64 lowercase characters).
    """
    return hashlib.sha256(data).hexdigest()


def compute_content_hash(
    record: ReviewRecord | Mapping[str, Any],
    previous_hash: str | None,
) -> str:
    """Content hash of a block: ``digest(canonicalize(record, previous_hash))``."""
    return digest(canonicalize(record, previous_hash))
