"""
Module: review_ledger.models.chain_block
Responsibility: ORM persistence for the tamper-evident review hash chain.
Architecture position: Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Blocks are append-only; no UPDATE or DELETE (ORM + DB trigger).
    - sequence_number is the primary key: no two blocks share a position.
    - previous_hash is unique: two blocks can never extend the same tail, so
      a concurrent append built on a stale tail fails at commit.
    - content_hash is unique across the ledger.
    - record_id is unique: one block per review.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError when an append races another append (mapped to
      AppendConflictError by the ledger store).

Audit relevance:
    ChainBlock IS the ledger.  The hash chain makes any retroactive change to
    a review's content detectable by ChainVerifier.
"""

from sqlalchemy import ForeignKey, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from review_ledger.db.base import Base, BigIntegerKey
from review_ledger.domain.records import Block


class ChainBlock(Base):
    """
    One link of the review hash chain.

    Contract:
        ChainBlock rows are written once by ChainBuilder and never modified.

    Guarantees:
        - content_hash = H(review fields | previous_hash) under hash_version.
        - previous_hash is "0" only for sequence_number 0.

    Non-goals:
        - This model does NOT check hash correctness at INSERT time;
          that is the responsibility of ChainBuilder and ChainVerifier.
    """

    __tablename__ = "chain_blocks"

    sequence_number: Mapped[int] = mapped_column(
        BigIntegerKey,
        primary_key=True,
        autoincrement=False,
    )

    record_id: Mapped[int] = mapped_column(
        ForeignKey("reviews.id"),
        nullable=False,
        unique=True,
    )

    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    # "0" for the genesis block
    previous_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    hash_version: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ChainBlock #{self.sequence_number} record={self.record_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.sequence_number == 0

    def to_block(self) -> Block:
        return Block(
            sequence_number=self.sequence_number,
            record_id=self.record_id,
            content_hash=self.content_hash,
            previous_hash=self.previous_hash,
            hash_version=self.hash_version,
        )

    @classmethod
    def from_block(cls, block: Block) -> "ChainBlock":
        return cls(
            sequence_number=block.sequence_number,
            record_id=block.record_id,
            content_hash=block.content_hash,
            previous_hash=block.previous_hash,
            hash_version=block.hash_version,
        )
