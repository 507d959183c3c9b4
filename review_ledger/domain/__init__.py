"""
Pure domain layer.

This module contains immutable value objects and the canonical hashing
rules, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)
"""

from review_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from review_ledger.domain.hashing import (
    CANONICAL_VERSION,
    canonicalize,
    compute_content_hash,
    digest,
)
from review_ledger.domain.records import (
    GENESIS_PREVIOUS_HASH,
    Block,
    ChainedReview,
    ReviewRecord,
)
from review_ledger.domain.report import (
    ChainBreak,
    ChainBreakKind,
    RecordIntegrityResult,
    VerificationMode,
    VerificationReport,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CANONICAL_VERSION",
    "canonicalize",
    "digest",
    "compute_content_hash",
    "GENESIS_PREVIOUS_HASH",
    "Block",
    "ChainedReview",
    "ReviewRecord",
    "ChainBreak",
    "ChainBreakKind",
    "RecordIntegrityResult",
    "VerificationMode",
    "VerificationReport",
]
