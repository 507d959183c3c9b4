"""
ChainVerifier -- replays the chain and reports every divergence.

Responsibility:
    Recomputes each block's content hash from the record's currently stored
    fields and checks each block's link to its predecessor.  Produces a
    VerificationReport; never writes and never repairs.

Architecture position:
    Services -- read-only.  Depends on LedgerStore and HashEngine.

Checks per block:
    - content: compute_content_hash(record, block.previous_hash) equals the
      stored content_hash.
    - link: block.previous_hash equals the predecessor's STORED content_hash,
      or GENESIS_PREVIOUS_HASH for sequence 0.
    - shape: contiguous sequence numbers, well-formed and unique hashes,
      the referenced record still exists.

A tampered record therefore shows up as a content mismatch at its own block
only; the next block's link still matches the stored hash.  Blocks whose
stored hashes were also rewritten show up as link mismatches further on.
"""

from review_ledger.domain.clock import Clock, SystemClock
from review_ledger.domain.hashing import (
    CANONICAL_VERSION,
    compute_content_hash,
    is_hex_digest,
)
from review_ledger.domain.records import GENESIS_PREVIOUS_HASH, Block, ReviewRecord
from review_ledger.domain.report import (
    ChainBreak,
    ChainBreakKind,
    RecordIntegrityResult,
    VerificationMode,
    VerificationReport,
)
from review_ledger.exceptions import CanonicalizationError, RecordNotFoundError
from review_ledger.logging_config import get_logger
from review_ledger.services.ledger_store import LedgerStore

logger = get_logger("services.chain_verifier")


class ChainVerifier:
    """
    Audits the ledger.

    Contract:
        ``verify_chain`` returns a report for the requested range.
        ``verify_record`` checks a single block's content only.

    Guarantees:
        - Read-only; safe to run concurrently with appends.  Blocks committed
          after the walk starts may or may not be included.
        - Findings are returned, not raised.
    """

    def __init__(self, store: LedgerStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def verify_chain(
        self,
        mode: VerificationMode = VerificationMode.EXHAUSTIVE,
        start_sequence: int = 0,
        end_sequence: int | None = None,
    ) -> VerificationReport:
        """
        Walk the chain in ascending sequence order.

        Args:
            mode: FAIL_FAST stops at the first divergent block; EXHAUSTIVE
                reports all of them.
            start_sequence: First block to check.  When above 0 the
                predecessor block is fetched for the first link check.
            end_sequence: Last block to check (inclusive), or None for the tail.

        Returns:
            VerificationReport.  An empty ledger yields a valid report with
            ``examined == 0``.
        """
        mode = VerificationMode(mode)
        if start_sequence < 0:
            raise ValueError("start_sequence must be non-negative")
        if end_sequence is not None and end_sequence < start_sequence:
            raise ValueError("end_sequence must not precede start_sequence")

        logger.info(
            "chain_verification_started",
            extra={
                "mode": mode.value,
                "start_sequence": start_sequence,
                "end_sequence": end_sequence,
            },
        )

        breaks: list[ChainBreak] = []
        valid: list[int] = []
        seen_hashes: set[str] = set()
        examined = 0

        predecessor_hash: str | None = None
        if start_sequence > 0:
            predecessor = self._store.get_by_sequence(start_sequence - 1)
            if predecessor is not None:
                predecessor_hash = predecessor.content_hash

        expected_sequence = start_sequence
        for block, record in self._store.iter_chain(start_sequence, end_sequence):
            examined += 1
            findings = self._check_block(
                block, record, expected_sequence, predecessor_hash, seen_hashes
            )
            seen_hashes.add(block.content_hash)
            predecessor_hash = block.content_hash
            expected_sequence = block.sequence_number + 1

            if findings:
                breaks.extend(findings)
                if mode is VerificationMode.FAIL_FAST:
                    break
            else:
                valid.append(block.sequence_number)

        unchained: tuple[int, ...] = ()
        full_run = start_sequence == 0 and end_sequence is None
        if full_run and not (mode is VerificationMode.FAIL_FAST and breaks):
            unchained_records = self._store.list_unchained_records()
            unchained = tuple(r.id for r in unchained_records)
            breaks.extend(
                ChainBreak(
                    sequence_number=None,
                    record_id=r.id,
                    kind=ChainBreakKind.UNCHAINED_RECORD,
                    detail="record has no block",
                )
                for r in unchained_records
            )

        for finding in breaks:
            logger.critical("chain_break_detected", extra=finding.to_dict())

        report = VerificationReport(
            mode=mode,
            examined=examined,
            valid_sequence_numbers=tuple(valid),
            breaks=tuple(breaks),
            checked_at=self._clock.now(),
            start_sequence=start_sequence,
            end_sequence=end_sequence,
            unchained_record_ids=unchained,
        )

        logger.info(
            "chain_verification_completed",
            extra={
                "valid": report.is_valid,
                "examined": report.examined,
                "break_count": len(report.breaks),
            },
        )
        return report

    def verify_record(self, record_id: int) -> RecordIntegrityResult:
        """
        Check the content hash of the block sealing ``record_id``.

        Only the record's own content is checked; chain continuity is not.

        Raises:
            RecordNotFoundError: No block exists for ``record_id``.
        """
        block = self._store.get_by_record_id(record_id)
        if block is None:
            raise RecordNotFoundError(record_id)

        record = self._store.get_record(record_id)
        if record is None:
            return RecordIntegrityResult(
                record_id=record_id,
                sequence_number=block.sequence_number,
                content_valid=False,
                expected_hash=None,
                stored_hash=block.content_hash,
                detail="record no longer exists",
            )

        if block.hash_version != CANONICAL_VERSION:
            return RecordIntegrityResult(
                record_id=record_id,
                sequence_number=block.sequence_number,
                content_valid=False,
                expected_hash=None,
                stored_hash=block.content_hash,
                detail=(
                    f"unsupported canonical form version {block.hash_version} "
                    f"(supported: {CANONICAL_VERSION})"
                ),
            )

        try:
            recomputed = compute_content_hash(record, block.previous_hash)
        except CanonicalizationError as exc:
            return RecordIntegrityResult(
                record_id=record_id,
                sequence_number=block.sequence_number,
                content_valid=False,
                expected_hash=None,
                stored_hash=block.content_hash,
                detail=str(exc),
            )

        content_valid = recomputed == block.content_hash
        if not content_valid:
            logger.critical(
                "record_content_mismatch",
                extra={
                    "record_id": record_id,
                    "sequence_number": block.sequence_number,
                },
            )
        return RecordIntegrityResult(
            record_id=record_id,
            sequence_number=block.sequence_number,
            content_valid=content_valid,
            expected_hash=recomputed,
            stored_hash=block.content_hash,
            detail="" if content_valid else "stored fields do not match the sealed hash",
        )

    def _check_block(
        self,
        block: Block,
        record: ReviewRecord | None,
        expected_sequence: int,
        predecessor_hash: str | None,
        seen_hashes: set[str],
    ) -> list[ChainBreak]:
        findings: list[ChainBreak] = []

        def finding(kind, expected=None, actual=None, detail=""):
            findings.append(
                ChainBreak(
                    sequence_number=block.sequence_number,
                    record_id=block.record_id,
                    kind=kind,
                    expected=expected,
                    actual=actual,
                    detail=detail,
                )
            )

        if block.sequence_number != expected_sequence:
            finding(
                ChainBreakKind.SEQUENCE_GAP,
                expected=str(expected_sequence),
                actual=str(block.sequence_number),
                detail="sequence numbers are not contiguous",
            )

        if not is_hex_digest(block.content_hash):
            finding(
                ChainBreakKind.MALFORMED_HASH,
                actual=block.content_hash,
                detail="stored content_hash is not 64 lowercase hex characters",
            )
        elif block.content_hash in seen_hashes:
            finding(
                ChainBreakKind.DUPLICATE_HASH,
                actual=block.content_hash,
                detail="content_hash already appears earlier in the chain",
            )

        # Link
        if block.sequence_number == 0:
            if block.previous_hash != GENESIS_PREVIOUS_HASH:
                finding(
                    ChainBreakKind.GENESIS_MISMATCH,
                    expected=GENESIS_PREVIOUS_HASH,
                    actual=block.previous_hash,
                )
        elif predecessor_hash is None:
            finding(
                ChainBreakKind.LINK_MISMATCH,
                expected=None,
                actual=block.previous_hash,
                detail="predecessor block is missing",
            )
        elif block.previous_hash != predecessor_hash:
            finding(
                ChainBreakKind.LINK_MISMATCH,
                expected=predecessor_hash,
                actual=block.previous_hash,
            )

        # Content
        if record is None:
            finding(
                ChainBreakKind.MISSING_RECORD,
                detail=f"record {block.record_id} no longer exists",
            )
        elif block.hash_version != CANONICAL_VERSION:
            finding(
                ChainBreakKind.UNHASHABLE_RECORD,
                expected=str(CANONICAL_VERSION),
                actual=str(block.hash_version),
                detail="unsupported canonical form version",
            )
        else:
            try:
                recomputed = compute_content_hash(record, block.previous_hash)
            except CanonicalizationError as exc:
                finding(ChainBreakKind.UNHASHABLE_RECORD, detail=str(exc))
            else:
                if recomputed != block.content_hash:
                    finding(
                        ChainBreakKind.CONTENT_MISMATCH,
                        expected=recomputed,
                        actual=block.content_hash,
                        detail="stored fields do not match the sealed hash",
                    )

        return findings
