"""
Module: trust_kernel.db.triggers
Responsibility: Loading, installing and verifying database immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (per dialect, see sql/<dialect>/*.sql):
    - trust_transactions: no UPDATE, no DELETE.
    - audit_outbox: only delivery-tracking columns may change; no DELETE.
    - trust_accounts: matter_id, currency and firm_account_id are fixed;
      version advances by exactly one per update; no DELETE.

PostgreSQL is the production backend.  The SQLite variants exist so the
same guarantees hold for the test suite and local development.

Failure modes:
    - The database raises on any trigger violation (surfaced by SQLAlchemy
      as IntegrityError or OperationalError).
    - ValueError for a dialect with no trigger set.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_trust_transaction.sql",
    "02_audit_outbox.sql",
    "03_trust_account.sql",
]

DROP_FILE = "99_drop_all.sql"

# Statements inside a file are separated by this marker line, because
# trigger bodies contain semicolons and sqlite3 executes one statement
# per call.
STATEMENT_SEPARATOR = "--;;"

ALL_TRIGGER_NAMES = [
    "trg_trust_transaction_immutability_update",
    "trg_trust_transaction_immutability_delete",
    "trg_audit_outbox_immutability_update",
    "trg_audit_outbox_immutability_delete",
    "trg_trust_account_structural_update",
    "trg_trust_account_delete",
]

SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def _dialect_dir(engine: Engine) -> Path:
    name = engine.dialect.name
    if name not in SUPPORTED_DIALECTS:
        raise ValueError(f"No immutability triggers available for dialect '{name}'")
    return SQL_DIR / name


def _load_statements(engine: Engine, filename: str) -> list[str]:
    """Load one SQL file and split it into executable statements."""
    content = (_dialect_dir(engine) / filename).read_text(encoding="utf-8")
    return [
        chunk.strip()
        for chunk in content.split(STATEMENT_SEPARATOR)
        if chunk.strip()
    ]


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers (idempotent).

    Preconditions: Tables must exist (call after metadata.create_all()).
    Postconditions: Every trigger in ALL_TRIGGER_NAMES is installed.
    """
    with engine.begin() as conn:
        for filename in TRIGGER_FILES:
            for statement in _load_statements(engine, filename):
                conn.execute(text(statement))


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for tests and data migrations.  Re-install immediately
    afterwards.
    """
    with engine.begin() as conn:
        for statement in _load_statements(engine, DROP_FILE):
            conn.execute(text(statement))


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names of the immutability triggers currently installed."""
    if engine.dialect.name == "postgresql":
        query = text("SELECT tgname FROM pg_trigger WHERE NOT tgisinternal")
    elif engine.dialect.name == "sqlite":
        query = text("SELECT name FROM sqlite_master WHERE type = 'trigger'")
    else:
        return []
    with engine.connect() as conn:
        installed = {row[0] for row in conn.execute(query)}
    return sorted(name for name in ALL_TRIGGER_NAMES if name in installed)


def get_missing_triggers(engine: Engine) -> list[str]:
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)


def triggers_installed(engine: Engine) -> bool:
    return not get_missing_triggers(engine)
