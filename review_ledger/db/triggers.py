"""
Module: review_ledger.db.triggers
Responsibility: Installing, removing, and checking PostgreSQL immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM listeners in db/immutability.py.
Architecture position: DB.  May import from db/ only.

Invariants enforced (PostgreSQL only):
    - chain_blocks rows: no UPDATE, no DELETE, ever.
    - reviews rows: no UPDATE of content columns and no DELETE once a
      chain_blocks row references them.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on any trigger violation (surfaced by
      SQLAlchemy as InternalError / DBAPIError).
    - OperationalError on deadlock during installation (caller retries).

Audit relevance:
    Even if the ORM layer is bypassed (raw SQL, bulk operations, direct psql
    access), the database refuses to modify chained data.  Changes made by
    someone who also drops these triggers are exactly what ChainVerifier
    exists to detect.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

ALL_TRIGGER_NAMES = [
    "trg_chain_block_immutability_update",
    "trg_chain_block_immutability_delete",
    "trg_review_content_immutability_update",
    "trg_review_immutability_delete",
]

_INSTALL_SQL = """
CREATE OR REPLACE FUNCTION prevent_chain_block_modification()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Chain block % is immutable (%)',
        OLD.sequence_number, TG_OP
        USING ERRCODE = 'integrity_constraint_violation';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_chain_block_immutability_update ON chain_blocks;
CREATE TRIGGER trg_chain_block_immutability_update
    BEFORE UPDATE ON chain_blocks
    FOR EACH ROW EXECUTE FUNCTION prevent_chain_block_modification();

DROP TRIGGER IF EXISTS trg_chain_block_immutability_delete ON chain_blocks;
CREATE TRIGGER trg_chain_block_immutability_delete
    BEFORE DELETE ON chain_blocks
    FOR EACH ROW EXECUTE FUNCTION prevent_chain_block_modification();

CREATE OR REPLACE FUNCTION prevent_chained_review_modification()
RETURNS TRIGGER AS $$
BEGIN
    IF EXISTS (SELECT 1 FROM chain_blocks WHERE record_id = OLD.id) THEN
        IF TG_OP = 'DELETE' THEN
            RAISE EXCEPTION 'Chained review % cannot be deleted', OLD.id
                USING ERRCODE = 'integrity_constraint_violation';
        END IF;
        IF NEW.id IS DISTINCT FROM OLD.id
           OR NEW.movie_title IS DISTINCT FROM OLD.movie_title
           OR NEW.review_text IS DISTINCT FROM OLD.review_text
           OR NEW.rating IS DISTINCT FROM OLD.rating
           OR NEW.author_id IS DISTINCT FROM OLD.author_id
           OR NEW.created_at IS DISTINCT FROM OLD.created_at THEN
            RAISE EXCEPTION 'Chained review % content is immutable', OLD.id
                USING ERRCODE = 'integrity_constraint_violation';
        END IF;
    END IF;
    IF TG_OP = 'DELETE' THEN
        RETURN OLD;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_review_content_immutability_update ON reviews;
CREATE TRIGGER trg_review_content_immutability_update
    BEFORE UPDATE ON reviews
    FOR EACH ROW EXECUTE FUNCTION prevent_chained_review_modification();

DROP TRIGGER IF EXISTS trg_review_immutability_delete ON reviews;
CREATE TRIGGER trg_review_immutability_delete
    BEFORE DELETE ON reviews
    FOR EACH ROW EXECUTE FUNCTION prevent_chained_review_modification();
"""

_DROP_SQL = """
DROP TRIGGER IF EXISTS trg_chain_block_immutability_update ON chain_blocks;
DROP TRIGGER IF EXISTS trg_chain_block_immutability_delete ON chain_blocks;
DROP TRIGGER IF EXISTS trg_review_content_immutability_update ON reviews;
DROP TRIGGER IF EXISTS trg_review_immutability_delete ON reviews;
DROP FUNCTION IF EXISTS prevent_chain_block_modification();
DROP FUNCTION IF EXISTS prevent_chained_review_modification();
"""


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: Tables must exist (call after create_all()).
        Engine must be connected to PostgreSQL.
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Idempotent (CREATE OR REPLACE / DROP IF EXISTS).
    """
    with engine.connect() as conn:
        conn.execute(text(_INSTALL_SQL))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for tests that simulate tampering, and for dropping the
    schema.  Leaving triggers uninstalled in production removes Layer 2.
    """
    with engine.connect() as conn:
        conn.execute(text(_DROP_SQL))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """
    Get list of installed immutability triggers.
    """
    trigger_list = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    check_sql = f"""
    SELECT tgname FROM pg_trigger
    WHERE tgname IN ({trigger_list})
    ORDER BY tgname;
    """

    with engine.connect() as conn:
        result = conn.execute(text(check_sql))
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """
    Check if all immutability triggers are installed.
    """
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
