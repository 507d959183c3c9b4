"""ORM models for the review ledger."""

from review_ledger.models.chain_block import ChainBlock
from review_ledger.models.review import Review

__all__ = [
    "ChainBlock",
    "Review",
]
