"""
Module: review_ledger.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  This is the single point of database
    connection configuration for the package.
Architecture position: DB.  May import from db/base.py and db/triggers.py.
    MUST NOT import from services/ (create_tables imports models lazily so
    Base.metadata is populated).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with QueuePool and pre-ping.  Append
      linearization does not depend on isolation level: it relies on the
      unique constraints of chain_blocks (see services/ledger_store.py).
    - SQLite is supported for local runs and tests.  File databases get a
      busy timeout so concurrent writers wait for the write lock instead of
      failing; in-memory databases share one connection (StaticPool).

Failure modes:
    - RuntimeError if get_engine/get_session_factory called before
      init_engine_from_url().
    - OperationalError on deadlock during trigger installation (retried up to 3x).
"""

import atexit
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from review_ledger.logging_config import get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an engine configured for the URL's dialect.

    Unlike init_engine_from_url(), this does not touch module state; tests and
    multi-database tools use it directly.

    Args:
        database_url: SQLAlchemy URL (postgresql://... or sqlite:///...).
        echo: If True, log all SQL statements.
        pool_size: PostgreSQL only -- connections kept in the pool.
        max_overflow: PostgreSQL only -- connections beyond pool_size.
        pool_pre_ping: PostgreSQL only -- test connections before use.
        pool_timeout: PostgreSQL only -- seconds to wait for a pooled connection.
        pool_recycle: PostgreSQL only -- seconds before a connection is recycled.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        connect_args = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        if url.database in (None, "", ":memory:"):
            return create_engine(
                url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        return create_engine(url, echo=echo, connect_args=connect_args)

    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Idempotent -- a second call replaces the first.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Each thread must create its own session from this factory.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Args:
        factory: Session factory to use.  Defaults to the module-level one.

    Usage:
        with session_scope() as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = (factory or get_session_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _import_models() -> None:
    # Registers every table on Base.metadata
    import review_ledger.models  # noqa: F401
    import review_ledger.services.sequence_service  # noqa: F401


def create_tables(engine: Engine | None = None, install_triggers: bool = True) -> None:
    """
    Create all tables and, on PostgreSQL, install immutability triggers.

    Args:
        engine: Engine to use.  Defaults to the module-level one.
        install_triggers: If True, install database-level immutability
                         triggers (PostgreSQL only; ignored elsewhere).

    Raises:
        RuntimeError: If no engine is given and none is initialized.
        OperationalError: If trigger installation fails after 3 retries.
    """
    from review_ledger.db.base import Base

    engine = engine or get_engine()
    _import_models()
    Base.metadata.create_all(engine)

    if install_triggers and engine.dialect.name == "postgresql":
        from review_ledger.db.triggers import install_immutability_triggers

        max_retries = 3
        for attempt in range(max_retries):
            try:
                install_immutability_triggers(engine)
                break
            except OperationalError as exc:
                if "deadlock" in str(exc).lower() and attempt < max_retries - 1:
                    logger.warning(
                        "trigger_install_deadlock_retry",
                        extra={"attempt": attempt + 1, "max_retries": max_retries},
                    )
                    engine.dispose()
                    time.sleep(0.5 * (attempt + 1))
                else:
                    raise


def drop_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from review_ledger.db.base import Base

    engine = engine or get_engine()
    _import_models()
    if engine.dialect.name == "postgresql":
        from review_ledger.db.triggers import uninstall_immutability_triggers

        uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
