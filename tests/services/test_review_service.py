"""
Tests for ReviewService.

Verifies:
- Submission validates input, stamps created_at from the clock, and chains
- Revision appends a new record and leaves the original block intact
- Only the original author may revise
"""

import pytest

from review_ledger.exceptions import (
    InvalidReviewError,
    NotReviewOwnerError,
    RecordNotFoundError,
)


class TestSubmit:

    def test_submit_chains_the_review(self, review_service, clock, verifier):
        chained = review_service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=5
        )

        assert chained.record.id == 1
        assert chained.record.created_at == clock.now()
        assert chained.block.sequence_number == 0
        assert chained.block.record_id == chained.record.id
        assert verifier.verify_chain().is_valid

    def test_title_is_trimmed(self, review_service):
        chained = review_service.submit_review(
            author_id=7, movie_title="  Alien  ", review_text="Tense.", rating=5
        )
        assert chained.record.movie_title == "Alien"

    def test_submissions_get_increasing_ids(self, review_service):
        ids = [
            review_service.submit_review(
                author_id=1, movie_title=f"Movie {i}", review_text="ok", rating=3
            ).record.id
            for i in range(3)
        ]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    @pytest.mark.parametrize(
        "overrides, field_name",
        [
            ({"movie_title": ""}, "movie_title"),
            ({"movie_title": "   "}, "movie_title"),
            ({"review_text": None}, "review_text"),
            ({"author_id": None}, "author_id"),
            ({"rating": None}, "rating"),
            ({"rating": 0}, "rating"),
            ({"rating": 6}, "rating"),
            ({"rating": 4.5}, "rating"),
            ({"rating": True}, "rating"),
            ({"author_id": "7"}, "author_id"),
            ({"movie_title": "x" * 256}, "movie_title"),
        ],
    )
    def test_invalid_input_rejected(self, review_service, store, overrides, field_name):
        fields = {
            "author_id": 7,
            "movie_title": "Alien",
            "review_text": "Tense.",
            "rating": 5,
        }
        fields.update(overrides)

        with pytest.raises(InvalidReviewError) as exc_info:
            review_service.submit_review(**fields)

        assert exc_info.value.field_name == field_name
        assert store.get_tail() is None


class TestRevise:

    def test_revision_is_a_new_block(self, review_service, store, verifier):
        original = review_service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=4
        )

        revised = review_service.revise_review(
            original.record.id, author_id=7, review_text="Even better.", rating=5
        )

        assert revised.record.id != original.record.id
        assert revised.record.movie_title == "Alien"
        assert revised.block.previous_hash == original.block.content_hash
        assert store.get_record(original.record.id) == original.record
        assert verifier.verify_chain().is_valid

    def test_revision_may_change_title(self, review_service):
        original = review_service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=4
        )

        revised = review_service.revise_review(
            original.record.id,
            author_id=7,
            review_text="Tense.",
            rating=4,
            movie_title="Alien (Director's Cut)",
        )

        assert revised.record.movie_title == "Alien (Director's Cut)"

    def test_only_author_may_revise(self, review_service, store):
        original = review_service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=4
        )

        with pytest.raises(NotReviewOwnerError):
            review_service.revise_review(
                original.record.id, author_id=8, review_text="Mine now.", rating=1
            )

        assert len(store.get_all()) == 1

    def test_unknown_record(self, review_service):
        with pytest.raises(RecordNotFoundError):
            review_service.revise_review(99, author_id=7, review_text="x", rating=3)


class TestGet:

    def test_get_review(self, review_service):
        original = review_service.submit_review(
            author_id=7, movie_title="Alien", review_text="Tense.", rating=4
        )

        fetched = review_service.get_review(original.record.id)

        assert fetched == original

    def test_get_unknown_review(self, review_service):
        with pytest.raises(RecordNotFoundError):
            review_service.get_review(42)
