"""
Review Ledger - tamper-evident hash chain for review records.

Every review is sealed into an append-only, hash-linked ledger at creation:
- Deterministic, versioned content hashing
- Linearized appends (compare-and-swap on the chain tail)
- On-demand chain and record verification
- Append-only persistence enforced at the ORM and database level
"""

__version__ = "0.1.0"
