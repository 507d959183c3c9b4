"""
SequenceService -- monotonic id allocation via counter rows.

Responsibility:
    Provides strictly increasing review record ids.  The id is a hash input,
    so it must exist before the record is inserted; a database-side
    autoincrement would only assign it at flush time.

Architecture position:
    Services -- infrastructure.  Called by SqlLedgerStore.allocate_record_id().

Invariants enforced:
    - Monotonicity: the counter is advanced with a single atomic
      ``UPDATE ... SET current_value = current_value + 1``.  The UPDATE takes
      the row lock (PostgreSQL) or the database write lock (SQLite) before
      the new value is read back, so two allocations can never observe the
      same value.  The aggregate-max-plus-one pattern is never used.
    - Transactional: the increment is visible only after the caller's
      transaction commits.

Failure modes:
    - IntegrityError: Two transactions creating the same counter row at
      once.  Propagated; the ledger store rolls back and retries.
    - LedgerStoreError: the counter row holds a negative value.
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column

from review_ledger.db.base import Base
from review_ledger.exceptions import LedgerStoreError
from review_ledger.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT guarantee gap-free ids: an id allocated for an append
          that later fails stays consumed.

    Usage:
        with session_scope(factory) as session:
            record_id = SequenceService(session).next_value(
                SequenceService.REVIEW_RECORD
            )
    """

    # Well-known sequence names
    REVIEW_RECORD = "review_record"

    def __init__(self, session: Session):
        self._session = session

    def _increment(self, sequence_name: str) -> int | None:
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.

        Postconditions:
            - Returns an integer > 0 that is strictly greater than any
              previously returned value for this sequence name.

        Args:
            sequence_name: Name of the sequence.

        Returns:
            The next sequence value (always > 0).
        """
        value = self._increment(sequence_name)

        if value is None:
            # First use of this sequence.  A concurrent first use surfaces as
            # IntegrityError on flush; the caller rolls back and retries.
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
            value = 1

        if value <= 0:
            raise LedgerStoreError(
                "next_value",
                f"sequence {sequence_name!r} produced non-positive value {value}",
            )
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """
        Get the current value of a sequence without incrementing.

        Returns:
            Current value, or None if sequence doesn't exist.
        """
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def advance_to(self, sequence_name: str, value: int) -> None:
        """
        Ensure the sequence is at least ``value``.

        Used when the CRUD layer supplies its own ids (or when legacy rows
        are imported) so later allocations never reuse them.  Never moves
        the counter backwards.
        """
        current = self.current_value(sequence_name)
        if current is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        elif current < value:
            self._session.execute(
                update(SequenceCounter)
                .where(
                    SequenceCounter.name == sequence_name,
                    SequenceCounter.current_value < value,
                )
                .values(current_value=value)
                .execution_options(synchronize_session=False)
            )
        self._session.flush()
