"""
Immutable value objects for review records and chain blocks.

Responsibility:
    Defines the shapes that cross the persistence boundary: the review
    content handed off by the CRUD layer (ReviewRecord) and the chain
    metadata sealing it (Block).

Architecture position:
    Domain -- pure, no I/O.  Imported by hashing, services, and models.

Invariants enforced:
    - Both types are frozen; a Block is never mutated after construction.
    - GENESIS_PREVIOUS_HASH is the exact ASCII string "0".
"""

from dataclasses import dataclass
from datetime import datetime

# Link value of the first block: "no predecessor".
GENESIS_PREVIOUS_HASH = "0"

# Ordered hash input fields.  Changing this tuple requires a new
# canonical-form version (see domain/hashing.py).
CANONICAL_FIELDS: tuple[str, ...] = (
    "id",
    "movie_title",
    "review_text",
    "rating",
    "author_id",
    "created_at",
)

MIN_RATING = 1
MAX_RATING = 5


@dataclass(frozen=True)
class ReviewRecord:
    """
    Review content as persisted by the CRUD layer.

    The chain subsystem only reads it, at creation time (to seal it) and at
    audit time (to recompute the seal).
    """

    id: int
    movie_title: str
    review_text: str
    rating: int
    author_id: int
    created_at: datetime


@dataclass(frozen=True)
class Block:
    """
    Chain metadata sealing exactly one ReviewRecord.

    Guarantees:
        - ``sequence_number`` starts at 0 and is contiguous across the ledger.
        - ``previous_hash`` is GENESIS_PREVIOUS_HASH for sequence 0, otherwise
          the ``content_hash`` of the block at ``sequence_number - 1``.
        - ``content_hash`` = H(record fields, previous_hash) under
          canonical form ``hash_version``.
    """

    sequence_number: int
    record_id: int
    content_hash: str
    previous_hash: str
    hash_version: int

    @property
    def is_genesis(self) -> bool:
        """True iff this is the first block of the ledger."""
        return self.sequence_number == 0


@dataclass(frozen=True)
class ChainedReview:
    """
    A review together with the block that sealed it.

    ``block`` is None for legacy records that have not been backfilled yet.
    """

    record: ReviewRecord
    block: Block | None
