"""
ChainBuilder -- appends a block for each new review record.

Responsibility:
    Reads the ledger tail, derives the next sequence number and link value,
    computes the content hash, and commits record and block atomically
    through the LedgerStore.

Architecture position:
    Services -- imperative shell around the pure HashEngine.

Invariants enforced:
    - Genesis: the first block links to GENESIS_PREVIOUS_HASH ("0") and has
      sequence number 0.
    - Linkage: every later block links to the tail's content_hash.
    - Linearization: the tail is re-read on every attempt.  A conflicting
      commit is rejected by the store (AppendConflictError) and the whole
      read-hash-commit cycle is repeated, up to ``max_append_attempts``.
    - Nothing is committed when any step fails.

Failure modes:
    - MissingFieldError / InvalidFieldError: the record cannot be hashed, or
      its rating is out of range.  Checked before the store is touched.
    - TailReadError: the store was unreachable while reading the tail.
    - HashCollisionError: the computed hash is already in the ledger.
      Never retried.
    - AppendConflictError: retries exhausted under contention.
    - LedgerStoreError: the store rejected the write for any other reason.
      Never retried.
"""

from collections.abc import Callable

from review_ledger.domain.hashing import (
    CANONICAL_VERSION,
    canonicalize,
    compute_content_hash,
)
from review_ledger.domain.records import (
    GENESIS_PREVIOUS_HASH,
    MAX_RATING,
    MIN_RATING,
    Block,
    ReviewRecord,
)
from review_ledger.exceptions import (
    AppendConflictError,
    DuplicateRecordError,
    HashCollisionError,
    InvalidFieldError,
    TailReadError,
)
from review_ledger.logging_config import LogContext, get_logger
from review_ledger.services.ledger_store import LedgerStore

logger = get_logger("services.chain_builder")

DEFAULT_MAX_APPEND_ATTEMPTS = 5


class ChainBuilder:
    """
    Builds and commits chain blocks.

    Contract:
        ``append_block(record)`` returns the committed Block, or raises with
        nothing committed.

    Non-goals:
        - Does NOT cache the tail between calls.
        - Does NOT allocate record ids (see ReviewService).
    """

    def __init__(
        self,
        store: LedgerStore,
        max_append_attempts: int = DEFAULT_MAX_APPEND_ATTEMPTS,
    ):
        if max_append_attempts < 1:
            raise ValueError("max_append_attempts must be at least 1")
        self._store = store
        self._max_attempts = max_append_attempts

    @property
    def max_append_attempts(self) -> int:
        return self._max_attempts

    def append_block(self, record: ReviewRecord) -> Block:
        """
        Seal a new record into the chain.

        Args:
            record: Fully populated record (id already assigned).

        Returns:
            The committed Block.

        Raises:
            MissingFieldError: A required field is absent.
            InvalidFieldError: A field has the wrong type or is out of range.
            TailReadError: The store was unreachable.
            HashCollisionError: The computed hash already exists.
            AppendConflictError: Retries exhausted.
            LedgerStoreError: The store rejected the write.
        """
        with LogContext.bind(record_id=record.id):
            _check_appendable(record)
            block = self._commit_with_retry(
                record,
                lambda candidate: self._store.append(record, candidate),
            )

        logger.info(
            "chain_block_appended",
            extra={
                "sequence_number": block.sequence_number,
                "record_id": block.record_id,
                "content_hash": block.content_hash,
                "previous_hash": block.previous_hash,
            },
        )
        return block

    def chain_unchained_records(self, limit: int | None = None) -> list[Block]:
        """
        Backfill: chain stored records that have no block yet.

        Records are sealed in ascending id order, each through the same
        compare-and-swap cycle as a new append.  A record sealed concurrently
        by another process is skipped.

        Returns:
            Blocks committed by this call, in chain order.
        """
        pending = self._store.list_unchained_records(limit)
        committed: list[Block] = []

        logger.info("chain_backfill_started", extra={"pending": len(pending)})

        for record in pending:
            with LogContext.bind(record_id=record.id):
                try:
                    block = self._commit_with_retry(record, self._store.attach)
                except DuplicateRecordError:
                    logger.info(
                        "chain_backfill_record_already_chained",
                        extra={"record_id": record.id},
                    )
                    continue
            committed.append(block)

        logger.info(
            "chain_backfill_completed",
            extra={"chained": len(committed), "pending": len(pending)},
        )
        return committed

    def _commit_with_retry(
        self,
        record: ReviewRecord,
        commit: Callable[[Block], None],
    ) -> Block:
        attempt = 0
        while True:
            attempt += 1
            block = self._build_next_block(record)
            try:
                commit(block)
                return block
            except HashCollisionError:
                logger.critical(
                    "chain_hash_collision",
                    extra={
                        "content_hash": block.content_hash,
                        "sequence_number": block.sequence_number,
                    },
                )
                raise
            except AppendConflictError as exc:
                if attempt >= self._max_attempts:
                    logger.error(
                        "chain_append_conflict_exhausted",
                        extra={
                            "sequence_number": block.sequence_number,
                            "attempts": attempt,
                        },
                    )
                    raise AppendConflictError(
                        block.sequence_number, block.previous_hash, attempts=attempt
                    ) from exc
                logger.warning(
                    "chain_append_conflict_retry",
                    extra={
                        "sequence_number": block.sequence_number,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                    },
                )

    def _build_next_block(self, record: ReviewRecord) -> Block:
        try:
            tail = self._store.get_tail()
        except TailReadError:
            logger.error("chain_tail_read_failed", exc_info=True)
            raise

        if tail is None:
            sequence_number = 0
            previous_hash = GENESIS_PREVIOUS_HASH
        else:
            sequence_number = tail.sequence_number + 1
            previous_hash = tail.content_hash

        content_hash = compute_content_hash(record, previous_hash)

        if self._store.contains_hash(content_hash):
            logger.critical(
                "chain_hash_collision",
                extra={
                    "content_hash": content_hash,
                    "sequence_number": sequence_number,
                },
            )
            raise HashCollisionError(content_hash, record.id, sequence_number)

        return Block(
            sequence_number=sequence_number,
            record_id=record.id,
            content_hash=content_hash,
            previous_hash=previous_hash,
            hash_version=CANONICAL_VERSION,
        )


def _check_appendable(record: ReviewRecord) -> None:
    """
    Reject a record the store would refuse, before any I/O.

    Canonicalization covers presence and types; the rating range is a
    schema rule that the hash itself does not enforce.
    """
    canonicalize(record, GENESIS_PREVIOUS_HASH)
    if not MIN_RATING <= record.rating <= MAX_RATING:
        logger.warning(
            "chain_append_rejected_invalid_record",
            extra={"field": "rating", "value": record.rating},
        )
        raise InvalidFieldError(
            "rating",
            record.rating,
            f"must be between {MIN_RATING} and {MAX_RATING}",
        )
