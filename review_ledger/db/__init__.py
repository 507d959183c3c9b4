"""Database layer - engine, base classes, immutability enforcement."""

from review_ledger.db.base import Base, UTCDateTime
from review_ledger.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "build_engine",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
