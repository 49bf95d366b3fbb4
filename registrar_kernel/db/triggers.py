"""
Module: registrar_kernel.db.triggers
Responsibility: Loading, installing, and verifying PostgreSQL immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only (pathlib for
    SQL file loading, sqlalchemy for execution).  MUST NOT import from
    models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (via 5 PostgreSQL triggers across 3 SQL files):
    - DocumentAuditTrail rows: no UPDATE, no DELETE, ever.
    - DocumentRegistry rows: no DELETE; voided rows frozen except audit
      bookkeeping columns.
    - DocumentType.code immutable once referenced by registry rows.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on any trigger violation (surfaced by
      SQLAlchemy as IntegrityError or InternalError).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
    - OperationalError on deadlock during installation (caller retries).

Audit relevance:
    Even if the ORM layer is bypassed (raw SQL, bulk operations, direct
    psql access), the database refuses to rewrite issued-number history.
    SQLite deployments rely on Layer 1 only.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

# Directory containing SQL trigger files
SQL_DIR = Path(__file__).parent / "sql"

# Ordered list of trigger files to install (numbered for predictable order)
TRIGGER_FILES = [
    "01_audit_trail.sql",
    "02_document_registry.sql",
    "03_document_type.sql",
]

# File containing drop statements for all triggers
DROP_FILE = "99_drop_all.sql"

# All trigger names (for verification)
ALL_TRIGGER_NAMES = [
    # Audit trail (01)
    "trg_audit_trail_immutability_update",
    "trg_audit_trail_immutability_delete",
    # Document registry (02)
    "trg_document_registry_delete",
    "trg_document_registry_voided_update",
    # Document type (03)
    "trg_document_type_code_immutability",
]


def _load_sql_file(filename: str) -> str:
    """
    Load SQL content from a file in the sql/ directory.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    filepath = SQL_DIR / filename
    return filepath.read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    """Load and concatenate all trigger SQL files in numbered order."""
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def _trigger_name_list() -> str:
    return ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: Tables must exist (call after create_all).
        Engine must be connected to PostgreSQL.
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Trigger functions use CREATE OR REPLACE (idempotent).
    """
    sql_content = _load_all_trigger_sql()

    with engine.connect() as conn:
        conn.execute(text(sql_content))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for migrations that must rewrite historical rows.
    Re-install IMMEDIATELY afterwards.
    """
    sql_content = _load_sql_file(DROP_FILE)

    with engine.connect() as conn:
        conn.execute(text(sql_content))
        conn.commit()


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES exists in pg_trigger."""
    check_sql = f"""
    SELECT COUNT(*) FROM pg_trigger
    WHERE tgname IN ({_trigger_name_list()});
    """

    with engine.connect() as conn:
        result = conn.execute(text(check_sql)).scalar()
        return result == len(ALL_TRIGGER_NAMES)


def get_installed_triggers(engine: Engine) -> list[str]:
    """List of installed registrar triggers, sorted by name."""
    check_sql = f"""
    SELECT tgname FROM pg_trigger
    WHERE tgname IN ({_trigger_name_list()})
    ORDER BY tgname;
    """

    with engine.connect() as conn:
        result = conn.execute(text(check_sql))
        return [row[0] for row in result]


def get_missing_triggers(engine: Engine) -> list[str]:
    """Triggers that should be installed but aren't."""
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)
