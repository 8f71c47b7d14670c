"""Engine and session factory for the SQLite reference store.

Provides SQLite engine creation with pragmas, session factory creation,
store initialization, and schema checks.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, inspect, select
from sqlalchemy.exc import DatabaseError
from sqlalchemy.orm import Session, sessionmaker

from nsprune.exceptions import StorageReadError
from nsprune.storage.schema import Base, StoreMetaRow

STORE_FILENAME = "store.db"
SCHEMA_VERSION = "2"

DEFAULT_BUSY_TIMEOUT_MS = 5000


def is_lock_error(exc: BaseException) -> bool:
    """True if a database error was caused by another connection holding a lock."""
    message = str(getattr(exc, "orig", None) or exc).lower()
    return "locked" in message or "busy" in message


def store_path(repo_path: Path) -> Path:
    """Path of the SQLite store file inside a repository directory."""
    return repo_path / STORE_FILENAME


def create_store_engine(
    db_path: str | Path = ":memory:",
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> Engine:
    """Create a SQLAlchemy engine for a reference store.

    SQLite pragmas (WAL, busy_timeout, foreign keys) are applied on every
    new connection.  *busy_timeout_ms* bounds how long a statement waits
    for another process's lock before failing with "database is locked".

    Args:
        db_path: Path to the SQLite file, or ``":memory:"`` for in-memory.
        busy_timeout_ms: Lock wait in milliseconds.

    Returns:
        Configured SQLAlchemy Engine.
    """
    if str(db_path) == ":memory:":
        engine = create_engine("sqlite://", echo=False)
    else:
        engine = create_engine(f"sqlite:///{db_path}", echo=False)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the given engine.

    Uses expire_on_commit=False so rows stay readable after commit.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables and record the schema version if missing."""
    Base.metadata.create_all(engine)

    SessionLocal = create_session_factory(engine)
    with SessionLocal() as session:
        existing = session.execute(
            select(StoreMetaRow).where(StoreMetaRow.key == "schema_version")
        ).scalar_one_or_none()
        if existing is None:
            session.add(StoreMetaRow(key="schema_version", value=SCHEMA_VERSION))
            session.commit()


def init_store(repo_path: Path) -> Path:
    """Create an empty store inside *repo_path*, creating the directory.

    Repository creation belongs to the surrounding tooling; the pruning
    core only ever opens existing stores.

    Returns:
        Path of the created store file.
    """
    repo_path.mkdir(parents=True, exist_ok=True)
    db_file = store_path(repo_path)
    engine = create_store_engine(db_file)
    try:
        init_db(engine)
    finally:
        engine.dispose()
    return db_file


def check_schema(engine: Engine) -> str:
    """Verify that *engine* points at an initialized store.

    Returns:
        The stored schema version.

    Raises:
        StorageReadError: If the file is not a database, tables are missing,
            or the schema version is unknown.
    """
    try:
        tables = set(inspect(engine).get_table_names())
        missing = set(Base.metadata.tables) - tables
        if missing:
            raise StorageReadError(
                f"Store is missing tables: {', '.join(sorted(missing))}"
            )
        with create_session_factory(engine)() as session:
            version = session.execute(
                select(StoreMetaRow.value).where(StoreMetaRow.key == "schema_version")
            ).scalar_one_or_none()
    except (DatabaseError, sqlite3.DatabaseError) as e:
        raise StorageReadError(
            f"Cannot read store: {e}", retryable=is_lock_error(e)
        ) from e

    if version != SCHEMA_VERSION:
        raise StorageReadError(f"Unsupported store schema version: {version!r}")
    return version
