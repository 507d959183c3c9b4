"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The hash chain can DETECT a changed review, but detection is the last resort.
Chained data should not be changeable through the application in the first
place.  This module is the first layer of that protection:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL triggers)
    - Catches raw SQL, bulk UPDATE statements, direct psql access
    - Fires AT the database level, independent of application code

Anything that gets past both layers is what ChainVerifier reports.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity       | When Immutable                 | Why
-------------|--------------------------------|---------------------------------
ChainBlock   | ALWAYS (from creation)         | The ledger is append-only
Review       | Once a ChainBlock references it| Content is sealed by the block

Review edits follow the "immutable once chained" policy: a revision is a new
review with a new block (see services/review_service.py), never an UPDATE.

===============================================================================
USAGE
===============================================================================

Called once at startup:

    from review_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect, text

from review_ledger.exceptions import ImmutabilityViolationError
from review_ledger.logging_config import get_logger

logger = get_logger("db.immutability")


def _review_is_chained(connection, record_id) -> bool:
    """Check whether a block references the review."""
    result = connection.execute(
        text("SELECT 1 FROM chain_blocks WHERE record_id = :record_id"),
        {"record_id": record_id},
    ).first()
    return result is not None


def _check_chain_block_immutability(mapper, connection, target):
    """
    Prevent any updates to ChainBlock records.
    """
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ChainBlock",
            "entity_id": str(target.sequence_number),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ChainBlock",
        entity_id=str(target.sequence_number),
        reason="Chain blocks are immutable and cannot be modified",
    )


def _check_chain_block_delete(mapper, connection, target):
    """
    Prevent deletion of ChainBlock records.
    """
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ChainBlock",
            "entity_id": str(target.sequence_number),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ChainBlock",
        entity_id=str(target.sequence_number),
        reason="Chain blocks cannot be deleted",
    )


def _check_review_immutability(mapper, connection, target):
    """
    Prevent content updates to a chained Review.

    Unchained (legacy, pre-backfill) reviews may still be corrected.
    """
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.history.has_changes()
    ]
    if not changed:
        return

    record_id = state.committed_state.get("id", target.id)
    if not _review_is_chained(connection, record_id):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Review",
            "entity_id": str(record_id),
            "operation": "UPDATE",
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Review",
        entity_id=str(record_id),
        reason=(
            "Chained review content cannot be modified; "
            f"attempted change to {', '.join(sorted(changed))}"
        ),
    )


def _check_review_delete(mapper, connection, target):
    """
    Prevent deletion of a chained Review.
    """
    if not _review_is_chained(connection, target.id):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Review",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Review",
        entity_id=str(target.id),
        reason="Chained reviews cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Must be called during application initialization, after models are
    importable and before any database writes.  Safe to call repeatedly.
    """
    from review_ledger.models.chain_block import ChainBlock
    from review_ledger.models.review import Review

    _safe_add_listener(ChainBlock, "before_update", _check_chain_block_immutability)
    _safe_add_listener(ChainBlock, "before_delete", _check_chain_block_delete)

    _safe_add_listener(Review, "before_update", _check_review_immutability)
    _safe_add_listener(Review, "before_delete", _check_review_delete)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from review_ledger.models.chain_block import ChainBlock
    from review_ledger.models.review import Review

    _safe_remove_listener(ChainBlock, "before_update", _check_chain_block_immutability)
    _safe_remove_listener(ChainBlock, "before_delete", _check_chain_block_delete)

    _safe_remove_listener(Review, "before_update", _check_review_immutability)
    _safe_remove_listener(Review, "before_delete", _check_review_delete)
