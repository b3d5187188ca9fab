"""
Module: club_kernel.db.triggers
Responsibility: Loading and installing database-level immutability triggers.
    This is the database complement to the ORM listeners in db/immutability.py:
    a raw UPDATE that bypasses the ORM still cannot rewrite an audit entry,
    a sealed set of minutes, or a closed support case.
Architecture position: Kernel > DB.  May import from db/ only.

Dialects:
    PostgreSQL triggers are PL/pgSQL functions; SQLite triggers use
    RAISE(ABORT).  SQL lives in ``sql/<dialect>/`` and is applied in file
    name order; ``99_drop_all.sql`` removes everything.

Failure modes:
    - The database raises on any trigger violation (surfaced by SQLAlchemy
      as IntegrityError or OperationalError).
    - FileNotFoundError if SQL files are missing.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from club_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_audit_entry.sql",
    "02_sealed_content.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_audit_entry_immutability_update",
    "trg_audit_entry_immutability_delete",
    "trg_minutes_sealed_content",
    "trg_support_case_closed",
]


def _dialect_dir(engine: Engine) -> Path:
    name = engine.dialect.name
    if name not in ("postgresql", "sqlite"):
        raise ValueError(f"No immutability triggers for dialect {name!r}")
    return SQL_DIR / name


def _load_sql_file(engine: Engine, filename: str) -> str:
    return (_dialect_dir(engine) / filename).read_text(encoding="utf-8")


def _execute_script(engine: Engine, sql_content: str) -> None:
    if engine.dialect.name == "sqlite":
        # pysqlite runs one statement per execute(); executescript runs many
        raw = engine.raw_connection()
        try:
            raw.driver_connection.executescript(sql_content)
        finally:
            raw.close()
        return
    with engine.connect() as conn:
        conn.execute(text(sql_content))
        conn.commit()


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: tables exist (call after create_all).
    Postconditions: every trigger in ALL_TRIGGER_NAMES is installed.
        Installation is idempotent.
    """
    for filename in TRIGGER_FILES:
        _execute_script(engine, _load_sql_file(engine, filename))
    logger.info("immutability_triggers_installed", extra={"dialect": engine.dialect.name})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: only for tests and migrations that must touch sealed rows.
    Re-install immediately afterwards.
    """
    _execute_script(engine, _load_sql_file(engine, DROP_FILE))
    logger.warning("immutability_triggers_uninstalled", extra={"dialect": engine.dialect.name})


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names of installed kernel triggers, sorted."""
    if engine.dialect.name == "sqlite":
        query = text(
            "SELECT name FROM sqlite_master WHERE type = 'trigger' ORDER BY name"
        )
    else:
        query = text("SELECT tgname FROM pg_trigger ORDER BY tgname")
    with engine.connect() as conn:
        names = [row[0] for row in conn.execute(query)]
    return [name for name in names if name in ALL_TRIGGER_NAMES]


def triggers_installed(engine: Engine) -> bool:
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
