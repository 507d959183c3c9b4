"""
Tests for ChainBuilder.

Verifies:
- Genesis block uses sequence 0 and the "0" sentinel
- Each later block links to the tail's content hash
- Conflicting commits are retried against the new tail
- Failures (missing field, out-of-range rating, tail read, collision,
  store rejection, exhausted retries) commit nothing
- Only a lost race on the tail is retried
"""

import pytest

from review_ledger.domain.hashing import CANONICAL_VERSION, compute_content_hash
from review_ledger.domain.records import GENESIS_PREVIOUS_HASH, Block, ReviewRecord
from review_ledger.exceptions import (
    AppendConflictError,
    DuplicateRecordError,
    HashCollisionError,
    InvalidFieldError,
    LedgerStoreError,
    MissingFieldError,
    TailReadError,
)
from review_ledger.services.chain_builder import ChainBuilder
from review_ledger.services.ledger_store import SqlLedgerStore


class TestGenesis:

    def test_first_block_is_genesis(self, builder, make_record):
        block = builder.append_block(make_record())

        assert block.sequence_number == 0
        assert block.previous_hash == GENESIS_PREVIOUS_HASH
        assert block.is_genesis
        assert block.hash_version == CANONICAL_VERSION

    def test_only_first_block_uses_sentinel(self, build_chain):
        blocks = build_chain(4)
        assert [b.previous_hash == "0" for b in blocks] == [True, False, False, False]


class TestLinking:

    def test_blocks_link_to_tail(self, build_chain):
        blocks = build_chain(3)

        assert [b.sequence_number for b in blocks] == [0, 1, 2]
        assert blocks[1].previous_hash == blocks[0].content_hash
        assert blocks[2].previous_hash == blocks[1].content_hash

    def test_content_hash_matches_hash_engine(self, builder, make_record):
        record = make_record()
        block = builder.append_block(record)
        assert block.content_hash == compute_content_hash(record, "0")

    def test_block_and_record_are_persisted(self, builder, make_record, store):
        record = make_record()
        block = builder.append_block(record)

        assert store.get_tail() == block
        assert store.get_by_record_id(record.id) == block
        assert store.get_record(record.id) == record

    def test_tail_is_read_on_every_append(self, store, make_record, session_factory):
        # Two builders over the same database see each other's blocks
        first = ChainBuilder(store)
        second = ChainBuilder(SqlLedgerStore(session_factory))

        a = first.append_block(make_record())
        b = second.append_block(make_record())
        c = first.append_block(make_record())

        assert b.previous_hash == a.content_hash
        assert c.previous_hash == b.content_hash

    def test_appended_event_logged(self, builder, make_record, captured_logs):
        builder.append_block(make_record())

        events = [r for r in captured_logs() if r["message"] == "chain_block_appended"]
        assert len(events) == 1
        assert events[0]["level"] == "INFO"
        assert events[0]["sequence_number"] == 0
        assert events[0]["previous_hash"] == "0"


class RacingStore(SqlLedgerStore):
    """Commits an intruding block on the same tail just before the first append."""

    def __init__(self, session_factory, intruder: ReviewRecord):
        super().__init__(session_factory)
        self._intruder = intruder
        self.raced = False

    def append(self, record, block):
        if not self.raced:
            self.raced = True
            super().append(
                self._intruder,
                Block(
                    sequence_number=block.sequence_number,
                    record_id=self._intruder.id,
                    content_hash=compute_content_hash(
                        self._intruder, block.previous_hash
                    ),
                    previous_hash=block.previous_hash,
                    hash_version=CANONICAL_VERSION,
                ),
            )
        super().append(record, block)


class TestConflictRetry:

    def test_conflict_is_retried_on_new_tail(
        self, session_factory, make_record, verifier, captured_logs
    ):
        intruder = make_record(review_text="intruder")
        record = make_record(review_text="ours")
        racing = RacingStore(session_factory, intruder)

        block = ChainBuilder(racing).append_block(record)

        intruder_block = racing.get_by_record_id(intruder.id)
        assert intruder_block.sequence_number == 0
        assert block.sequence_number == 1
        assert block.previous_hash == intruder_block.content_hash
        assert verifier.verify_chain().is_valid

        retries = [
            r for r in captured_logs() if r["message"] == "chain_append_conflict_retry"
        ]
        assert len(retries) == 1
        assert retries[0]["level"] == "WARNING"

    def test_losing_commit_leaves_no_record(self, session_factory, make_record):
        intruder = make_record(review_text="intruder")
        record = make_record(review_text="ours")
        racing = RacingStore(session_factory, intruder)

        ChainBuilder(racing).append_block(record)

        # Only the two committed blocks exist; the rejected attempt left nothing
        assert [b.record_id for b in racing.get_all()] == [intruder.id, record.id]
        assert racing.list_unchained_records() == []

    def test_retries_exhausted(self, memory_store, make_record):
        calls = {"tail": 0}

        class AlwaysConflicting(type(memory_store)):
            def get_tail(self):
                calls["tail"] += 1
                return super().get_tail()

            def append(self, record, block):
                raise AppendConflictError(block.sequence_number, block.previous_hash)

        store = AlwaysConflicting()
        builder = ChainBuilder(store, max_append_attempts=3)

        with pytest.raises(AppendConflictError) as exc_info:
            builder.append_block(make_record())

        assert exc_info.value.attempts == 3
        assert calls["tail"] == 3
        assert store.get_tail() is None

    def test_attempts_must_be_positive(self, store):
        with pytest.raises(ValueError):
            ChainBuilder(store, max_append_attempts=0)


class TestFailuresCommitNothing:

    def test_missing_field(self, builder, make_record, store):
        good = make_record()
        incomplete = ReviewRecord(
            id=good.id,
            movie_title=None,
            review_text=good.review_text,
            rating=good.rating,
            author_id=good.author_id,
            created_at=good.created_at,
        )

        with pytest.raises(MissingFieldError) as exc_info:
            builder.append_block(incomplete)

        assert exc_info.value.field_name == "movie_title"
        assert store.get_tail() is None
        assert store.get_record(good.id) is None

    def test_tail_read_failure(self, memory_store, make_record, captured_logs):
        class Unreachable(type(memory_store)):
            def get_tail(self):
                raise TailReadError("connection refused")

        store = Unreachable()

        with pytest.raises(TailReadError):
            ChainBuilder(store).append_block(make_record())

        assert store.blocks == {}
        assert store.records == {}
        failures = [
            r for r in captured_logs() if r["message"] == "chain_tail_read_failed"
        ]
        assert failures and failures[0]["level"] == "ERROR"

    def test_hash_collision_is_not_retried(self, memory_store, make_record, captured_logs):
        appends = []

        class Colliding(type(memory_store)):
            def contains_hash(self, content_hash):
                return True

            def append(self, record, block):
                appends.append(block)

        with pytest.raises(HashCollisionError):
            ChainBuilder(Colliding()).append_block(make_record())

        assert appends == []
        collisions = [r for r in captured_logs() if r["message"] == "chain_hash_collision"]
        assert collisions and collisions[0]["level"] == "CRITICAL"

    def test_duplicate_record_id(self, builder, make_record, store):
        record = make_record()
        builder.append_block(record)

        with pytest.raises(DuplicateRecordError) as exc_info:
            builder.append_block(record)

        assert exc_info.value.record_id == record.id
        assert len(store.get_all()) == 1

    @pytest.mark.parametrize("rating", [0, 6, 9])
    def test_out_of_range_rating(self, builder, make_record, store, captured_logs, rating):
        record = make_record(rating=rating)

        with pytest.raises(InvalidFieldError) as exc_info:
            builder.append_block(record)

        assert not isinstance(exc_info.value, AppendConflictError)
        assert exc_info.value.field_name == "rating"
        assert store.get_tail() is None
        assert store.get_record(record.id) is None
        messages = [r["message"] for r in captured_logs()]
        assert "chain_append_conflict_retry" not in messages
        assert "chain_append_rejected_invalid_record" in messages

    def test_invalid_record_never_reaches_store(self, memory_store, make_record):
        touched = []

        class Watching(type(memory_store)):
            def get_tail(self):
                touched.append("get_tail")
                return super().get_tail()

        with pytest.raises(InvalidFieldError):
            ChainBuilder(Watching()).append_block(make_record(rating=42))

        assert touched == []

    def test_store_rejection_is_not_retried(self, memory_store, make_record, captured_logs):
        attempts = []

        class Rejecting(type(memory_store)):
            def append(self, record, block):
                attempts.append(block)
                raise LedgerStoreError("append", "CHECK constraint failed")

        with pytest.raises(LedgerStoreError):
            ChainBuilder(Rejecting(), max_append_attempts=5).append_block(make_record())

        assert len(attempts) == 1
        assert not any(
            r["message"] == "chain_append_conflict_retry" for r in captured_logs()
        )
