"""
LedgerStore -- durable, ordered storage of review records and chain blocks.

Responsibility:
    The persistence boundary that ChainBuilder and ChainVerifier depend on:
    tail lookup, atomic record+block append, ordered full scan, and point
    lookups.  ``LedgerStore`` is the contract; ``SqlLedgerStore`` implements
    it over SQLAlchemy.

Architecture position:
    Services -- imperative shell.  The only module that issues queries
    against ``reviews`` and ``chain_blocks``.

Invariants enforced:
    - Atomic append: the review row and its block are inserted in ONE
      transaction.  Either both are visible to other readers or neither is.
    - Compare-and-swap: ``chain_blocks`` has unique ``sequence_number``,
      ``previous_hash`` and ``content_hash``.  A block built on a tail that
      has since moved collides with the committed block and is rejected at
      commit.  The store reports that as AppendConflictError; it never
      decides to retry.
    - No cached state: every call queries the database.

Failure modes:
    - TailReadError: database unreachable during get_tail().
    - LedgerStoreError: database unreachable during any other operation,
      or a write rejected by a constraint unrelated to chain position
      (e.g. the rating CHECK).  Never a retry signal.
    - AppendConflictError: the tail moved between read and commit; a
      committed block now holds the same sequence number or link value.
    - DuplicateRecordError / HashCollisionError: the rejected insert
      collided on record id / content hash rather than on chain position.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

from sqlalchemy import exists, select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from review_ledger.db.engine import session_scope
from review_ledger.domain.records import Block, ReviewRecord
from review_ledger.exceptions import (
    AppendConflictError,
    DuplicateRecordError,
    HashCollisionError,
    LedgerStoreError,
    TailReadError,
)
from review_ledger.logging_config import get_logger
from review_ledger.models.chain_block import ChainBlock
from review_ledger.models.review import Review
from review_ledger.services.sequence_service import SequenceService

logger = get_logger("services.ledger_store")


class LedgerStore(ABC):
    """
    Contract for durable, ordered storage of blocks and their records.

    State machine: the ledger is Empty until the first successful append
    (or attach) and NonEmpty forever after.
    """

    @abstractmethod
    def get_tail(self) -> Block | None:
        """The highest-sequence block, or None if the ledger is empty."""

    @abstractmethod
    def append(self, record: ReviewRecord, block: Block) -> None:
        """Atomically persist the record and its block, or neither."""

    @abstractmethod
    def attach(self, block: Block) -> None:
        """Persist a block for a record that is already stored (backfill)."""

    @abstractmethod
    def get_all(self) -> list[Block]:
        """All blocks in ascending sequence order.  Each call starts over."""

    @abstractmethod
    def get_by_sequence(self, sequence_number: int) -> Block | None:
        """Block at the given position, or None."""

    @abstractmethod
    def get_by_record_id(self, record_id: int) -> Block | None:
        """Block sealing the given record, or None."""

    @abstractmethod
    def get_record(self, record_id: int) -> ReviewRecord | None:
        """Currently stored fields of a record, or None."""

    @abstractmethod
    def contains_hash(self, content_hash: str) -> bool:
        """True iff some block already carries ``content_hash``."""

    @abstractmethod
    def iter_chain(
        self,
        start_sequence: int = 0,
        end_sequence: int | None = None,
    ) -> Iterator[tuple[Block, ReviewRecord | None]]:
        """
        Blocks in ascending order paired with their record's current fields.

        The pairing comes from a single read so a verifier never sees a
        block without the record it was committed with.
        """

    @abstractmethod
    def list_unchained_records(self, limit: int | None = None) -> list[ReviewRecord]:
        """Records with no block, in ascending id order."""

    @abstractmethod
    def allocate_record_id(self) -> int:
        """Reserve the next store-assigned record id."""


class SqlLedgerStore(LedgerStore):
    """
    SQLAlchemy-backed LedgerStore.

    Contract:
        Each method runs in its own session and transaction obtained from
        ``session_factory``.  Instances hold no other state and may be shared
        across threads.

    Guarantees:
        - ``append`` and ``attach`` commit or roll back as a unit.
        - Reads observe only committed blocks.

    Non-goals:
        - Does NOT compute or check hashes -- that is ChainBuilder's and
          ChainVerifier's job.
        - Does NOT retry conflicts -- ChainBuilder owns the retry loop.
    """

    # Rows fetched per round trip during iter_chain
    CHAIN_BATCH_SIZE = 500

    # Retries for the first-use counter creation race
    ID_ALLOCATION_ATTEMPTS = 3

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # Reads

    def get_tail(self) -> Block | None:
        try:
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(ChainBlock)
                    .order_by(ChainBlock.sequence_number.desc())
                    .limit(1)
                ).scalar_one_or_none()
                return row.to_block() if row is not None else None
        except SQLAlchemyError as exc:
            raise TailReadError(str(exc)) from exc

    def get_all(self) -> list[Block]:
        with self._reading("get_all") as session:
            rows = session.execute(
                select(ChainBlock).order_by(ChainBlock.sequence_number)
            ).scalars().all()
            return [row.to_block() for row in rows]

    def get_by_sequence(self, sequence_number: int) -> Block | None:
        with self._reading("get_by_sequence") as session:
            row = session.get(ChainBlock, sequence_number)
            return row.to_block() if row is not None else None

    def get_by_record_id(self, record_id: int) -> Block | None:
        with self._reading("get_by_record_id") as session:
            row = session.execute(
                select(ChainBlock).where(ChainBlock.record_id == record_id)
            ).scalar_one_or_none()
            return row.to_block() if row is not None else None

    def get_record(self, record_id: int) -> ReviewRecord | None:
        with self._reading("get_record") as session:
            row = session.get(Review, record_id)
            return row.to_record() if row is not None else None

    def contains_hash(self, content_hash: str) -> bool:
        with self._reading("contains_hash") as session:
            return bool(
                session.execute(
                    select(exists().where(ChainBlock.content_hash == content_hash))
                ).scalar()
            )

    def iter_chain(
        self,
        start_sequence: int = 0,
        end_sequence: int | None = None,
    ) -> Iterator[tuple[Block, ReviewRecord | None]]:
        stmt = (
            select(ChainBlock, Review)
            .outerjoin(Review, Review.id == ChainBlock.record_id)
            .where(ChainBlock.sequence_number >= start_sequence)
            .order_by(ChainBlock.sequence_number)
        )
        if end_sequence is not None:
            stmt = stmt.where(ChainBlock.sequence_number <= end_sequence)

        with self._reading("iter_chain") as session:
            result = session.execute(
                stmt.execution_options(yield_per=self.CHAIN_BATCH_SIZE)
            )
            for block_row, review_row in result:
                yield (
                    block_row.to_block(),
                    review_row.to_record() if review_row is not None else None,
                )

    def list_unchained_records(self, limit: int | None = None) -> list[ReviewRecord]:
        stmt = (
            select(Review)
            .where(~exists().where(ChainBlock.record_id == Review.id))
            .order_by(Review.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._reading("list_unchained_records") as session:
            return [row.to_record() for row in session.execute(stmt).scalars()]

    # Writes

    def allocate_record_id(self) -> int:
        for attempt in range(1, self.ID_ALLOCATION_ATTEMPTS + 1):
            try:
                with session_scope(self._session_factory) as session:
                    return SequenceService(session).next_value(
                        SequenceService.REVIEW_RECORD
                    )
            except IntegrityError:
                if attempt == self.ID_ALLOCATION_ATTEMPTS:
                    raise LedgerStoreError(
                        "allocate_record_id", "sequence counter creation kept racing"
                    )
                logger.debug("record_id_allocation_retry", extra={"attempt": attempt})
            except SQLAlchemyError as exc:
                raise LedgerStoreError("allocate_record_id", str(exc)) from exc
        raise AssertionError("unreachable")

    def append(self, record: ReviewRecord, block: Block) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.add(Review.from_record(record))
                session.flush()
                session.add(ChainBlock.from_block(block))
                session.flush()
                # Caller-supplied ids must not be handed out again
                SequenceService(session).advance_to(
                    SequenceService.REVIEW_RECORD, record.id
                )
        except IntegrityError as exc:
            raise self._classify_rejection("append", block, exc) from exc
        except DBAPIError as exc:
            raise LedgerStoreError("append", str(exc)) from exc

        logger.debug(
            "ledger_append_committed",
            extra={
                "sequence_number": block.sequence_number,
                "record_id": record.id,
            },
        )

    def attach(self, block: Block) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.add(ChainBlock.from_block(block))
                session.flush()
        except IntegrityError as exc:
            raise self._classify_rejection(
                "attach", block, exc, record_preexisting=True
            ) from exc
        except DBAPIError as exc:
            raise LedgerStoreError("attach", str(exc)) from exc

    # Helpers

    def _reading(self, operation: str):
        return _ReadScope(self._session_factory, operation)

    def _classify_rejection(
        self,
        operation: str,
        block: Block,
        error: IntegrityError,
        record_preexisting: bool = False,
    ) -> Exception:
        """
        Work out why the database rejected an insert.

        Runs after the failed transaction was rolled back, so it sees the
        committed state that caused the rejection.  Only a committed block
        holding the same sequence number or link value is a lost race;
        any other constraint failure is permanent.
        """
        with self._reading("classify_rejection") as session:
            if record_preexisting:
                sealed = session.execute(
                    select(exists().where(ChainBlock.record_id == block.record_id))
                ).scalar()
                if sealed:
                    return DuplicateRecordError(block.record_id)
            else:
                if session.get(Review, block.record_id) is not None:
                    return DuplicateRecordError(block.record_id)

            collided = session.execute(
                select(ChainBlock).where(ChainBlock.content_hash == block.content_hash)
            ).scalar_one_or_none()
            if collided is not None and collided.previous_hash != block.previous_hash:
                return HashCollisionError(
                    block.content_hash, block.record_id, block.sequence_number
                )

            tail_taken = session.execute(
                select(
                    exists().where(
                        (ChainBlock.sequence_number == block.sequence_number)
                        | (ChainBlock.previous_hash == block.previous_hash)
                    )
                )
            ).scalar()

        if not tail_taken:
            logger.error(
                "ledger_append_rejected",
                extra={
                    "operation": operation,
                    "sequence_number": block.sequence_number,
                    "record_id": block.record_id,
                },
            )
            return LedgerStoreError(operation, str(error.orig))

        logger.info(
            "ledger_append_rejected_stale_tail",
            extra={
                "sequence_number": block.sequence_number,
                "previous_hash": block.previous_hash,
            },
        )
        return AppendConflictError(block.sequence_number, block.previous_hash)


class _ReadScope:
    """Read-only session scope that maps driver failures to LedgerStoreError."""

    def __init__(self, factory: sessionmaker[Session], operation: str):
        self._factory = factory
        self._operation = operation
        self._session: Session | None = None

    def __enter__(self) -> Session:
        try:
            self._session = self._factory()
        except SQLAlchemyError as exc:
            raise LedgerStoreError(self._operation, str(exc)) from exc
        return self._session

    def __exit__(self, exc_type, exc, tb) -> bool:
        assert self._session is not None
        try:
            self._session.rollback()
        finally:
            self._session.close()
        if exc is not None and isinstance(exc, SQLAlchemyError):
            logger.error(
                "ledger_store_read_failed",
                extra={"operation": self._operation},
            )
            raise LedgerStoreError(self._operation, str(exc)) from exc
        return False
