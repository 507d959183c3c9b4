"""Services for the review ledger (append, verify, persistence)."""

from review_ledger.services.chain_builder import ChainBuilder
from review_ledger.services.chain_verifier import ChainVerifier
from review_ledger.services.ledger_store import LedgerStore, SqlLedgerStore
from review_ledger.services.review_service import ReviewService
from review_ledger.services.sequence_service import SequenceService

__all__ = [
    "ChainBuilder",
    "ChainVerifier",
    "LedgerStore",
    "ReviewService",
    "SequenceService",
    "SqlLedgerStore",
]
