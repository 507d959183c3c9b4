"""
Module: review_ledger.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models, plus the
    column types shared across the schema.
Architecture position: DB.  This is the lowest-level import target within the
    package.  ALL model files import from here.  This module MUST NOT import
    from models/ or services/.

Invariants enforced:
    - Timestamps round-trip timezone-aware.  UTCDateTime normalizes to UTC on
      write and re-attaches UTC on read, so a created_at value hashed at
      append time is reproduced exactly at verification time on every
      backend (SQLite drops tzinfo, PostgreSQL converts to session zone).
    - int maps to BigInteger for identifiers and sequence numbers.
"""

from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

# SQLite only auto-assigns INTEGER PRIMARY KEY, not BIGINT
BigIntegerKey = BigInteger().with_variant(Integer(), "sqlite")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    Contract:
        Accepts only aware datetimes on bind; always returns aware UTC
        datetimes on load.

    Guarantees:
        - process_bind_param: aware datetime -> UTC datetime.
        - process_result_value: datetime -> aware UTC datetime.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Normalize to UTC when storing.

        Preconditions: value is an aware datetime or None.
        Postconditions: Returns the UTC equivalent (tz-naive on SQLite).
        """
        if value is None:
            return None
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError(f"Naive datetime cannot be stored: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        """Re-attach UTC when loading."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - datetime maps to UTCDateTime -- always timezone-aware.
        - int maps to BigInteger -- safe for monotonic sequences.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        int: BigIntegerKey,
    }
