"""Database connection and session management for the records inventory.

This module supports both:
- Local SQLite (default; a single-user desktop store)
- Any other SQLAlchemy URL via `DATABASE_URL`

Components never reach for the module-level engine directly; they receive a
session or a TransactionCoordinator. The module-level objects only back the
HTTP app's default dependency.
"""

import logging
import os
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Database URL - SQLite by default
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./records_inventory.db")


def _is_sqlite_url(database_url: str) -> bool:
    return "sqlite" in (database_url or "")


def get_engine_kwargs(database_url: str) -> dict:
    """Return deterministic create_engine kwargs for a DB URL.

    This is separated to allow deterministic unit testing without connecting.
    """
    engine_kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        "pool_pre_ping": True,
    }

    if _is_sqlite_url(database_url):
        # The HTTP app serves sync endpoints from a thread pool.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        return engine_kwargs

    engine_kwargs["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    engine_kwargs["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    engine_kwargs["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT_SEC", "30"))
    return engine_kwargs


def build_engine(database_url: str) -> Engine:
    engine = create_engine(database_url, **get_engine_kwargs(database_url))
    if _is_sqlite_url(database_url):
        event.listen(engine, "connect", set_sqlite_pragmas)
    return engine


def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable foreign keys so tag index rows follow their series on delete."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


# Create engine (module-level default)
engine = build_engine(DATABASE_URL)

# Create session factory
SessionLocal = build_session_factory(engine)

# Base class for declarative models
Base = declarative_base()


def _sqlite_table_has_column(dbapi_conn, table_name: str, column_name: str) -> bool:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute(f"PRAGMA table_info({table_name})")
        cols = [row[1] for row in cursor.fetchall()]  # row[1] is column name
        return column_name in cols
    finally:
        cursor.close()


def ensure_legacy_schema_compat(*, engine_override: Engine = None, database_url_override: str = None) -> None:
    """Ensure legacy SQLite files are compatible with the current schema.

    Stores created before the schedule rename carry `series.application_number`
    and may lack `series.schedule_number`. SQLite `create_all()` does not alter
    existing tables, so we patch the column in place and copy the values over.
    """
    database_url = database_url_override or DATABASE_URL
    if not _is_sqlite_url(database_url):
        return

    use_engine = engine_override or engine

    dbapi_conn = use_engine.raw_connection()
    try:
        if not _sqlite_table_has_column(dbapi_conn, "series", "_id"):
            return
        if not _sqlite_table_has_column(dbapi_conn, "series", "application_number"):
            return

        cursor = dbapi_conn.cursor()
        try:
            if not _sqlite_table_has_column(dbapi_conn, "series", "schedule_number"):
                cursor.execute("ALTER TABLE series ADD COLUMN schedule_number VARCHAR")
                cursor.execute("CREATE INDEX IF NOT EXISTS ix_series_schedule_number ON series (schedule_number)")
            cursor.execute(
                "UPDATE series SET schedule_number = application_number "
                "WHERE (schedule_number IS NULL OR schedule_number = '') "
                "AND application_number IS NOT NULL AND application_number != ''"
            )
            migrated = cursor.rowcount
            dbapi_conn.commit()
            logger.info(f"Copied application_number into schedule_number for {migrated} legacy series rows")
        finally:
            cursor.close()
    finally:
        dbapi_conn.close()


def init_db(engine_override: Engine = None) -> None:
    """Initialize database schema.

    Creates missing tables and applies the minimal legacy SQLite patches.
    """
    # Register the mapped tables on Base.metadata
    from recinventory.database import models  # noqa: F401

    use_engine = engine_override or engine
    Base.metadata.create_all(bind=use_engine)
    ensure_legacy_schema_compat(
        engine_override=use_engine,
        database_url_override=str(use_engine.url),
    )
