"""
ReviewService -- record creation entry point for the CRUD layer.

Responsibility:
    Validates review input, stamps ``created_at`` from the injected clock,
    allocates the record id, and hands the record to ChainBuilder.  Also owns
    the revision policy: chained content is never edited in place; a
    revision is a new record sealed by a new block.

Architecture position:
    Services -- orchestration.  Account management, listing and search are
    external collaborators.

Failure modes:
    - InvalidReviewError: a field is missing or out of range.
    - RecordNotFoundError: revision of an unknown record.
    - NotReviewOwnerError: revision by someone other than the author.
    - Any ChainBuilder error, with nothing committed.
"""

from review_ledger.domain.clock import Clock, SystemClock
from review_ledger.domain.records import (
    MAX_RATING,
    MIN_RATING,
    ChainedReview,
    ReviewRecord,
)
from review_ledger.exceptions import (
    InvalidReviewError,
    NotReviewOwnerError,
    RecordNotFoundError,
)
from review_ledger.logging_config import LogContext, get_logger
from review_ledger.services.chain_builder import ChainBuilder
from review_ledger.services.ledger_store import LedgerStore

logger = get_logger("services.review")

MAX_TITLE_LENGTH = 255


class ReviewService:
    """
    Creates and revises chained reviews.

    Usage:
        store = SqlLedgerStore(get_session_factory())
        service = ReviewService(store, ChainBuilder(store))
        chained = service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=5
        )
    """

    def __init__(
        self,
        store: LedgerStore,
        builder: ChainBuilder,
        clock: Clock | None = None,
    ):
        self._store = store
        self._builder = builder
        self._clock = clock or SystemClock()

    def submit_review(
        self,
        author_id: int,
        movie_title: str,
        review_text: str,
        rating: int,
    ) -> ChainedReview:
        """
        Persist a new review and seal it into the chain.

        Returns:
            The stored record and its block.

        Raises:
            InvalidReviewError: If any field is missing or invalid.
        """
        movie_title, review_text = _validate(
            author_id, movie_title, review_text, rating
        )

        with LogContext.bind(actor_id=author_id):
            record = ReviewRecord(
                id=self._store.allocate_record_id(),
                movie_title=movie_title,
                review_text=review_text,
                rating=rating,
                author_id=author_id,
                created_at=self._clock.now(),
            )
            block = self._builder.append_block(record)

            logger.info(
                "review_submitted",
                extra={
                    "record_id": record.id,
                    "sequence_number": block.sequence_number,
                },
            )
        return ChainedReview(record=record, block=block)

    def revise_review(
        self,
        record_id: int,
        author_id: int,
        review_text: str,
        rating: int,
        movie_title: str | None = None,
    ) -> ChainedReview:
        """
        Publish a revision of an existing review.

        The original record and its block are left untouched; the revision
        is a new record with a new id, appended at the tail.

        Raises:
            RecordNotFoundError: If ``record_id`` does not exist.
            NotReviewOwnerError: If ``author_id`` did not write the original.
            InvalidReviewError: If any field is invalid.
        """
        original = self._store.get_record(record_id)
        if original is None:
            raise RecordNotFoundError(record_id)
        if original.author_id != author_id:
            logger.warning(
                "review_revision_rejected",
                extra={"record_id": record_id, "author_id": author_id},
            )
            raise NotReviewOwnerError(record_id, author_id)

        revised = self.submit_review(
            author_id=author_id,
            movie_title=movie_title if movie_title is not None else original.movie_title,
            review_text=review_text,
            rating=rating,
        )
        logger.info(
            "review_revised",
            extra={"revised_from": record_id, "record_id": revised.record.id},
        )
        return revised

    def get_review(self, record_id: int) -> ChainedReview:
        """
        Fetch a stored review and the block sealing it.

        Raises:
            RecordNotFoundError: If ``record_id`` does not exist.
        """
        record = self._store.get_record(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return ChainedReview(
            record=record,
            block=self._store.get_by_record_id(record_id),
        )


def _validate(author_id, movie_title, review_text, rating) -> tuple[str, str]:
    fields = {
        "author_id": author_id,
        "movie_title": movie_title,
        "review_text": review_text,
        "rating": rating,
    }
    for name, value in fields.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidReviewError(name, "all fields are required")

    if not isinstance(author_id, int) or isinstance(author_id, bool):
        raise InvalidReviewError("author_id", "must be an integer")
    if not isinstance(movie_title, str):
        raise InvalidReviewError("movie_title", "must be a string")
    if not isinstance(review_text, str):
        raise InvalidReviewError("review_text", "must be a string")
    if not isinstance(rating, int) or isinstance(rating, bool):
        raise InvalidReviewError("rating", "must be an integer")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidReviewError(
            "rating", f"must be between {MIN_RATING} and {MAX_RATING}"
        )

    movie_title = movie_title.strip()
    if len(movie_title) > MAX_TITLE_LENGTH:
        raise InvalidReviewError(
            "movie_title", f"must be at most {MAX_TITLE_LENGTH} characters"
        )
    return movie_title, review_text
