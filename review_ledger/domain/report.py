"""
Verification results -- what an audit of the chain found.

Responsibility:
    Structured, immutable results returned by ChainVerifier.  Breaks are
    data, not exceptions: a broken chain is a legitimate audit outcome and
    must reach an operator intact.

Architecture position:
    Domain -- pure, no I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from review_ledger.exceptions import ChainBreakError


class VerificationMode(str, Enum):
    """How far a chain walk continues after the first divergence."""

    FAIL_FAST = "fail_fast"
    EXHAUSTIVE = "exhaustive"


class ChainBreakKind(str, Enum):
    """Classes of integrity findings."""

    # Recomputed content hash differs from the stored content hash
    CONTENT_MISMATCH = "content_mismatch"
    # previous_hash differs from the predecessor's stored content hash
    LINK_MISMATCH = "link_mismatch"
    # Block 0 previous_hash is not exactly "0"
    GENESIS_MISMATCH = "genesis_mismatch"
    # sequence_number is not the next contiguous value
    SEQUENCE_GAP = "sequence_gap"
    # Block references a record that no longer exists
    MISSING_RECORD = "missing_record"
    # Stored record fields cannot be canonicalized
    UNHASHABLE_RECORD = "unhashable_record"
    # Stored hash is not 64 lowercase hex characters
    MALFORMED_HASH = "malformed_hash"
    # content_hash already seen earlier in the walk
    DUPLICATE_HASH = "duplicate_hash"
    # Record persisted without a block
    UNCHAINED_RECORD = "unchained_record"


@dataclass(frozen=True)
class ChainBreak:
    """
    A single divergence found during verification.

    ``expected`` is the value verification derived (recomputed hash,
    predecessor hash, next sequence number); ``actual`` is what storage holds.
    """

    sequence_number: int | None
    record_id: int | None
    kind: ChainBreakKind
    expected: str | None = None
    actual: str | None = None
    detail: str = ""

    def to_error(self) -> ChainBreakError:
        return ChainBreakError(
            sequence_number=self.sequence_number,
            kind=self.kind.value,
            expected=self.expected,
            actual=self.actual,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "record_id": self.record_id,
            "kind": self.kind.value,
            "expected": self.expected,
            "actual": self.actual,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class VerificationReport:
    """
    Result of a chain walk.

    Contract:
        ``examined`` counts blocks visited (in FAIL_FAST mode the walk stops
        at, and includes, the first divergent block).  ``valid_sequence_numbers``
        lists blocks whose content and link both checked out.

    Guarantees:
        ``is_valid`` is True iff ``breaks`` is empty.
    """

    mode: VerificationMode
    examined: int
    valid_sequence_numbers: tuple[int, ...]
    breaks: tuple[ChainBreak, ...]
    checked_at: datetime
    start_sequence: int = 0
    end_sequence: int | None = None
    unchained_record_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.breaks

    @property
    def first_break(self) -> ChainBreak | None:
        return self.breaks[0] if self.breaks else None

    @property
    def valid_count(self) -> int:
        return len(self.valid_sequence_numbers)

    def raise_if_broken(self) -> None:
        """
        Raise ChainBreakError for the first finding, if any.

        Raises:
            ChainBreakError: If the report contains at least one break.
        """
        if self.breaks:
            raise self.breaks[0].to_error()

    def summary(self) -> str:
        status = "VALID" if self.is_valid else "BROKEN"
        return (
            f"{status}: {self.valid_count}/{self.examined} blocks validated, "
            f"{len(self.breaks)} break(s)"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "valid": self.is_valid,
            "examined": self.examined,
            "valid_sequence_numbers": list(self.valid_sequence_numbers),
            "breaks": [b.to_dict() for b in self.breaks],
            "unchained_record_ids": list(self.unchained_record_ids),
            "start_sequence": self.start_sequence,
            "end_sequence": self.end_sequence,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class RecordIntegrityResult:
    """
    Content integrity of ONE block.

    This result does NOT establish chain continuity: it recomputes the
    block's own content hash from the record's stored fields and the block's
    stored ``previous_hash``, but never compares ``previous_hash`` with the
    predecessor.  A block can pass here while the chain around it is broken.
    Use ``ChainVerifier.verify_chain()`` for continuity.

    Truthiness equals ``content_valid``.
    """

    record_id: int
    sequence_number: int
    content_valid: bool
    expected_hash: str | None
    stored_hash: str
    detail: str = ""
    scope: str = "content_only"
    checks_chain_continuity: bool = False

    def __bool__(self) -> bool:
        return self.content_valid
