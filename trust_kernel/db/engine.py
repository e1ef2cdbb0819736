"""
Module: trust_kernel.db.engine
Responsibility: build SQLAlchemy engines for the trust kernel and create or
    drop its schema.  The engine is owned by the caller and handed to
    SqlAlchemyTrustStore through a sessionmaker; there is no module-level
    engine.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/triggers.py.  MUST NOT import from services/, selectors/, domain/, or
    outer layers (create_tables imports models so metadata is complete).

Invariants enforced:
    - PostgreSQL is the production backend: READ COMMITTED with explicit
      row locks (SELECT ... FOR UPDATE) and conditional version updates.
    - SQLite is supported for tests and local development.  Every SQLite
      transaction starts with BEGIN IMMEDIATE so concurrent writers are
      serialized by the database instead of failing on lock upgrade, and
      foreign keys are switched on per connection.

Failure modes:
    - OperationalError on deadlock during trigger installation (retried up to 3x).
"""

import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import QueuePool, StaticPool

from trust_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _install_sqlite_pragmas(engine: Engine, busy_timeout_seconds: float) -> None:
    """Take over transaction control from pysqlite and enforce FKs."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's implicit BEGIN so the "begin" hook below decides.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_seconds * 1000)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    busy_timeout_seconds: float = SQLITE_BUSY_TIMEOUT_SECONDS,
) -> Engine:
    """
    Create an engine for PostgreSQL or SQLite without touching module state.

    ``busy_timeout_seconds`` bounds how long a SQLite connection waits for
    the database write lock before failing with "database is locked".

    In-memory SQLite (``sqlite://``) shares one connection through a
    StaticPool and is therefore single-threaded; use a file URL for
    concurrency tests.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        engine = create_engine(
            url,
            echo=echo,
            poolclass=StaticPool if in_memory else QueuePool,
            connect_args={
                "timeout": busy_timeout_seconds,
                "check_same_thread": False,
            },
            **({} if in_memory else {"pool_size": pool_size, "max_overflow": max_overflow}),
        )
        _install_sqlite_pragmas(engine, busy_timeout_seconds)
        return engine

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


def create_tables(engine: Engine, install_triggers: bool = True) -> None:
    """
    Create all trust kernel tables and, optionally, the immutability triggers.

    Trigger installation is retried on deadlock: stale connections from a
    previous run may still hold locks for a moment after being terminated.
    """
    from trust_kernel.db.base import Base
    from trust_kernel.db.triggers import install_immutability_triggers
    import trust_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(engine)

    if not install_triggers:
        return

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


def drop_tables(engine: Engine) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from trust_kernel.db.base import Base
    from trust_kernel.db.triggers import uninstall_immutability_triggers
    import trust_kernel.models  # noqa: F401

    uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)
