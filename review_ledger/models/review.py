"""
Module: review_ledger.models.review
Responsibility: ORM persistence for review content sealed by the chain.
Architecture position: Models.  May import from db/ and domain/ only.

Invariants enforced:
    - rating is between 1 and 5 (CHECK constraint).
    - id is assigned before insert (SequenceService or the caller); it is a
      hash input, so it must be known before the block is computed.
    - Content fields are immutable once chained (ORM listener + PostgreSQL
      trigger; see db/immutability.py and db/triggers.py).

Failure modes:
    - ImmutabilityViolationError on UPDATE of content fields or DELETE.
    - IntegrityError on duplicate id or out-of-range rating.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from review_ledger.db.base import Base, BigIntegerKey
from review_ledger.domain.records import MAX_RATING, MIN_RATING, ReviewRecord


class Review(Base):
    """
    A movie review as persisted by the CRUD layer.

    Contract:
        Rows are inserted together with their ChainBlock in one transaction.
        Rows without a block exist only as legacy data awaiting backfill.
    """

    __tablename__ = "reviews"

    __table_args__ = (
        CheckConstraint(
            f"rating >= {MIN_RATING} AND rating <= {MAX_RATING}",
            name="ck_reviews_rating_range",
        ),
        Index("idx_reviews_author", "author_id"),
    )

    id: Mapped[int] = mapped_column(
        BigIntegerKey,
        primary_key=True,
        autoincrement=False,
    )

    movie_title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    review_text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    rating: Mapped[int] = mapped_column(
        nullable=False,
    )

    # Reference to a user owned by the account service
    author_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Review {self.id} '{self.movie_title}' by {self.author_id}>"

    def to_record(self) -> ReviewRecord:
        return ReviewRecord(
            id=self.id,
            movie_title=self.movie_title,
            review_text=self.review_text,
            rating=self.rating,
            author_id=self.author_id,
            created_at=self.created_at,
        )

    @classmethod
    def from_record(cls, record: ReviewRecord) -> "Review":
        return cls(
            id=record.id,
            movie_title=record.movie_title,
            review_text=record.review_text,
            rating=record.rating,
            author_id=record.author_id,
            created_at=record.created_at,
        )
