"""
Typed Exception Hierarchy for the Review Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

An integrity subsystem must report failures precisely. Callers catch by type,
read a machine-readable ``code``, and use structured attributes instead of
parsing message strings.

    try:
        builder.append_block(record)
    except TailReadError as e:
        retry_with_backoff()          # Store unreachable, nothing committed
    except HashCollisionError as e:
        alert_operator(e.content_hash)  # Bug or tampering, never retried

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ReviewLedgerError:

    ReviewLedgerError (base)
    |
    +-- CanonicalizationError
    |   +-- MissingFieldError
    |   +-- InvalidFieldError
    |
    +-- LedgerStoreError
    |   +-- TailReadError
    |
    +-- AppendError
    |   +-- HashCollisionError
    |   +-- DuplicateRecordError
    |
    +-- ConcurrencyError
    |   +-- AppendConflictError
    |
    +-- IntegrityFindingError
    |   +-- ChainBreakError
    |
    +-- ReviewError
    |   +-- InvalidReviewError
    |   +-- RecordNotFoundError
    |   +-- NotReviewOwnerError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- LedgerConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | When Raised
----------------|------------------------|-------------------------------------------
Canonical form  | MISSING_FIELD          | Required hash input absent or None
                | INVALID_FIELD          | Hash input has the wrong type or format
----------------|------------------------|-------------------------------------------
Store           | LEDGER_STORE_ERROR     | Store unreachable outside the tail read
                | TAIL_READ_FAILED       | Store unreachable while reading the tail
----------------|------------------------|-------------------------------------------
Append          | HASH_COLLISION         | Computed content hash already in ledger
                | DUPLICATE_RECORD       | Record id already persisted
----------------|------------------------|-------------------------------------------
Concurrency     | APPEND_CONFLICT        | Tail moved under an append, retries spent
----------------|------------------------|-------------------------------------------
Verification    | CHAIN_BREAK            | Recomputed hash or link does not match
----------------|------------------------|-------------------------------------------
Review          | INVALID_REVIEW         | Review input fails validation
                | RECORD_NOT_FOUND       | No record/block for the given id
                | NOT_REVIEW_OWNER       | Revision attempted by another author
----------------|------------------------|-------------------------------------------
Immutability    | IMMUTABILITY_VIOLATION | UPDATE/DELETE of chained data
----------------|------------------------|-------------------------------------------
Config          | LEDGER_CONFIG_INVALID  | Settings file or environment is invalid

===============================================================================
PROPAGATION
===============================================================================

Append-path errors (MissingFieldError, TailReadError, HashCollisionError,
AppendConflictError) abort the append with nothing committed.

ChainBreakError is NOT raised by verification.  A broken chain is an expected
possible outcome of an audit, so ChainVerifier returns breaks as data in a
VerificationReport.  ``VerificationReport.raise_if_broken()`` converts the
first finding into a ChainBreakError for callers that want to halt.
"""


class ReviewLedgerError(Exception):
    """
    Base exception for all review ledger errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "REVIEW_LEDGER_ERROR"


# Canonicalization exceptions


class CanonicalizationError(ReviewLedgerError):
    """Base exception for canonical serialization errors."""

    code: str = "CANONICALIZATION_ERROR"


class MissingFieldError(CanonicalizationError):
    """A required hash input field is absent.

    No default is ever substituted: hashing a partial record would produce a
    digest that cannot be reproduced from the stored row.
    """

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str, record_id: object = None):
        self.field_name = field_name
        self.record_id = record_id
        super().__init__(
            f"Missing required field '{field_name}' for record {record_id}"
        )


class InvalidFieldError(CanonicalizationError):
    """A hash input field has the wrong type or format."""

    code: str = "INVALID_FIELD"

    def __init__(self, field_name: str, value: object, reason: str):
        self.field_name = field_name
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid field '{field_name}' ({value!r}): {reason}")


# Store exceptions


class LedgerStoreError(ReviewLedgerError):
    """The ledger store failed to complete an operation."""

    code: str = "LEDGER_STORE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger store failed during {operation}: {reason}")


class TailReadError(LedgerStoreError):
    """
    The store was unreachable while reading the chain tail.

    Fatal to the append in progress; nothing has been written.  Callers may
    retry with backoff.
    """

    code: str = "TAIL_READ_FAILED"

    def __init__(self, reason: str):
        super().__init__("get_tail", reason)


# Append exceptions


class AppendError(ReviewLedgerError):
    """Base exception for append-path failures."""

    code: str = "APPEND_ERROR"


class HashCollisionError(AppendError):
    """
    Computed content hash already exists in the ledger.

    Never retried.  Occurrence means an implementation error or adversarial
    interference.
    """

    code: str = "HASH_COLLISION"

    def __init__(self, content_hash: str, record_id: object, sequence_number: int):
        self.content_hash = content_hash
        self.record_id = record_id
        self.sequence_number = sequence_number
        super().__init__(
            f"Hash collision for record {record_id} at sequence "
            f"{sequence_number}: {content_hash} already in ledger"
        )


class DuplicateRecordError(AppendError):
    """A record with the same id is already persisted."""

    code: str = "DUPLICATE_RECORD"

    def __init__(self, record_id: object):
        self.record_id = record_id
        super().__init__(f"Record already exists: {record_id}")


# Concurrency exceptions


class ConcurrencyError(ReviewLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class AppendConflictError(ConcurrencyError):
    """The tail changed between read and commit.

    Raised by the store when a block built on a stale tail is rejected, and
    re-raised by ChainBuilder once its retry budget is spent.
    """

    code: str = "APPEND_CONFLICT"

    def __init__(self, sequence_number: int, previous_hash: str, attempts: int = 1):
        self.sequence_number = sequence_number
        self.previous_hash = previous_hash
        self.attempts = attempts
        super().__init__(
            f"Append conflict at sequence {sequence_number} "
            f"(previous_hash={previous_hash}) after {attempts} attempt(s)"
        )


# Verification findings


class IntegrityFindingError(ReviewLedgerError):
    """Base exception for integrity findings promoted to exceptions."""

    code: str = "INTEGRITY_FINDING"


class ChainBreakError(IntegrityFindingError):
    """Hash chain verification found a mismatch.

    Constructed from a ChainBreak finding.  Only raised on request via
    ``VerificationReport.raise_if_broken()``.
    """

    code: str = "CHAIN_BREAK"

    def __init__(
        self,
        sequence_number: int | None,
        kind: str,
        expected: str | None,
        actual: str | None,
    ):
        self.sequence_number = sequence_number
        self.kind = kind
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Chain broken at sequence {sequence_number} ({kind}): "
            f"expected {expected}, found {actual}"
        )


# Review exceptions


class ReviewError(ReviewLedgerError):
    """Base exception for review record errors."""

    code: str = "REVIEW_ERROR"


class InvalidReviewError(ReviewError):
    """Review input failed validation."""

    code: str = "INVALID_REVIEW"

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid review field '{field_name}': {reason}")


class RecordNotFoundError(ReviewError):
    """No record (or no block) exists for the given id."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_id: object):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class NotReviewOwnerError(ReviewError):
    """A revision was requested by someone other than the original author."""

    code: str = "NOT_REVIEW_OWNER"

    def __init__(self, record_id: object, author_id: object):
        self.record_id = record_id
        self.author_id = author_id
        super().__init__(
            f"Author {author_id} is not the owner of review {record_id}"
        )


# Immutability exceptions


class ImmutabilityError(ReviewLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete chained data.

    ChainBlock rows are immutable from creation; Review content is immutable
    once the review is chained.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class LedgerConfigError(ReviewLedgerError):
    """Settings file or environment variable is invalid."""

    code: str = "LEDGER_CONFIG_INVALID"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid setting '{setting}': {reason}")
