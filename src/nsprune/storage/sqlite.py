"""SQLite implementation of the repository storage interface.

All queries use SQLAlchemy 2.0-style statements (select()/delete() +
session.execute()). Each open repository owns one engine and one Session,
carried on its SqliteRepositoryHandle.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import DatabaseError, OperationalError
from sqlalchemy.orm import Session

from nsprune.exceptions import (
    CompactionError,
    InvalidReferenceNameError,
    LockContentionError,
    ReferenceDeleteError,
    RepositoryNotFoundError,
    StorageReadError,
)
from nsprune.models.reference import RefName, Reference
from nsprune.models.result import CompactionStats
from nsprune.storage.engine import (
    DEFAULT_BUSY_TIMEOUT_MS,
    check_schema,
    create_session_factory,
    create_store_engine,
    is_lock_error,
    store_path,
)
from nsprune.storage.locator import locate
from nsprune.storage.repositories import RepositoryHandle, RepositoryStorage
from nsprune.storage.schema import ObjectLinkRow, ObjectRow, RefRow

logger = logging.getLogger(__name__)

# Stay well under SQLite's bound-parameter limit
_DELETE_CHUNK = 500


def hash_object(kind: str, payload: bytes) -> str:
    """SHA-256 of a git-style ``"<kind> <size>\\0"`` header plus payload."""
    header = f"{kind} {len(payload)}\0".encode("utf-8")
    return hashlib.sha256(header + payload).hexdigest()


def _store_size(db_file: Path) -> int:
    """Bytes used by the store file plus its write-ahead log."""
    total = 0
    for candidate in (db_file, db_file.with_name(db_file.name + "-wal")):
        if candidate.exists():
            total += candidate.stat().st_size
    return total


@dataclass
class SqliteRepositoryHandle(RepositoryHandle):
    """Open SQLite-backed repository."""

    engine: Engine = field(default=None, repr=False)  # type: ignore[assignment]
    session: Session = field(default=None, repr=False)  # type: ignore[assignment]

    @property
    def db_file(self) -> Path:
        return store_path(self.path)


class SqliteRepositoryStorage(RepositoryStorage):
    """Reference store kept in ``<repo>/store.db``.

    Refs are rows of the ``refs`` table. Objects form a graph through
    ``object_links``; compaction deletes every object no ref can reach and
    then VACUUMs the file.
    """

    name = "sqlite"

    def __init__(self, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self._busy_timeout_ms = busy_timeout_ms

    # -- Lifecycle ------------------------------------------------------

    def open(self, storage_root: Path, rid: str) -> SqliteRepositoryHandle:
        path = locate(storage_root, rid)
        db_file = store_path(path)
        if not db_file.is_file():
            raise RepositoryNotFoundError(rid, path, "no reference store")

        engine = create_store_engine(db_file, busy_timeout_ms=self._busy_timeout_ms)
        try:
            check_schema(engine)
        except Exception:
            engine.dispose()
            raise

        session = create_session_factory(engine)()
        logger.debug("Opened sqlite store %s", db_file)
        return SqliteRepositoryHandle(rid=rid, path=path, engine=engine, session=session)

    def close(self, handle: RepositoryHandle) -> None:
        handle = self._check(handle)
        handle.session.close()
        handle.engine.dispose()

    # -- Reads ----------------------------------------------------------

    def list_references(self, handle: RepositoryHandle) -> Iterator[Reference]:
        handle = self._check(handle)
        stmt = select(RefRow.ref_name, RefRow.target_hash)
        try:
            for ref_name, target_hash in handle.session.execute(stmt):
                try:
                    name = RefName.parse(ref_name)
                except InvalidReferenceNameError as e:
                    raise StorageReadError(f"Corrupt reference in store: {e}") from e
                yield Reference(name, target_hash)
        except OperationalError as e:
            raise StorageReadError(
                f"Cannot read references: {e.orig}", retryable=is_lock_error(e)
            ) from e
        except DatabaseError as e:
            raise StorageReadError(f"Cannot read references: {e.orig}") from e

    def get_reference(self, handle: RepositoryHandle, name: str) -> str | None:
        """Target hash of the reference *name*, or None if absent."""
        handle = self._check(handle)
        stmt = select(RefRow.target_hash).where(RefRow.ref_name == name)
        return handle.session.execute(stmt).scalar_one_or_none()

    def count_objects(self, handle: RepositoryHandle) -> int:
        handle = self._check(handle)
        return len(handle.session.execute(select(ObjectRow.object_hash)).all())

    # -- Writes ---------------------------------------------------------

    def write_object(
        self,
        handle: RepositoryHandle,
        kind: str,
        payload: bytes,
        links: Iterable[str] = (),
    ) -> str:
        """Store an object (idempotent) and its outgoing links. Returns its hash."""
        handle = self._check(handle)
        session = handle.session
        object_hash = hash_object(kind, payload)
        if session.get(ObjectRow, object_hash) is None:
            session.add(ObjectRow(object_hash=object_hash, kind=kind, payload=payload))
            session.flush()
            for target in dict.fromkeys(links):
                session.add(ObjectLinkRow(source_hash=object_hash, target_hash=target))
        session.commit()
        return object_hash

    def update_reference(self, handle: RepositoryHandle, name: str, target: str) -> None:
        """Create or move the reference *name* to *target*."""
        handle = self._check(handle)
        RefName.parse(name)
        session = handle.session
        row = session.get(RefRow, name)
        if row is None:
            session.add(RefRow(ref_name=name, target_hash=target))
        else:
            row.target_hash = target
        session.commit()

    def delete_reference(self, handle: RepositoryHandle, name: RefName) -> None:
        handle = self._check(handle)
        session = handle.session
        ref_name = str(name)
        try:
            result = session.execute(delete(RefRow).where(RefRow.ref_name == ref_name))
            if result.rowcount == 0:
                session.rollback()
                raise ReferenceDeleteError(ref_name, "reference does not exist")
            session.commit()
        except OperationalError as e:
            session.rollback()
            if is_lock_error(e):
                raise LockContentionError("delete", ref_name) from e
            raise ReferenceDeleteError(ref_name, str(e.orig)) from e
        except DatabaseError as e:
            session.rollback()
            raise ReferenceDeleteError(ref_name, str(e.orig)) from e

    # -- Compaction -----------------------------------------------------

    def compact(self, handle: RepositoryHandle) -> CompactionStats:
        handle = self._check(handle)
        session = handle.session
        size_before = _store_size(handle.db_file)

        try:
            unreachable = self._unreachable_objects(session)
            hashes = sorted(unreachable)
            for i in range(0, len(hashes), _DELETE_CHUNK):
                chunk = hashes[i : i + _DELETE_CHUNK]
                session.execute(
                    delete(ObjectLinkRow).where(ObjectLinkRow.source_hash.in_(chunk))
                )
                session.execute(delete(ObjectRow).where(ObjectRow.object_hash.in_(chunk)))
            session.commit()

            start = time.monotonic()
            with handle.engine.connect() as conn:
                conn = conn.execution_options(isolation_level="AUTOCOMMIT")
                conn.exec_driver_sql("VACUUM")
                conn.exec_driver_sql("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("VACUUM took %.3fs", time.monotonic() - start)
        except OperationalError as e:
            session.rollback()
            if is_lock_error(e):
                raise LockContentionError("compact", str(e.orig)) from e
            raise CompactionError(f"Compaction failed: {e.orig}") from e
        except DatabaseError as e:
            session.rollback()
            raise CompactionError(f"Compaction failed: {e.orig}") from e

        size_after = _store_size(handle.db_file)
        return CompactionStats(
            objects_removed=len(hashes),
            bytes_reclaimed=max(0, size_before - size_after),
        )

    @staticmethod
    def _unreachable_objects(session: Session) -> set[str]:
        """Hashes of objects not reachable from any ref through object_links."""
        all_objects = set(session.execute(select(ObjectRow.object_hash)).scalars())

        edges: dict[str, list[str]] = {}
        for source, target in session.execute(
            select(ObjectLinkRow.source_hash, ObjectLinkRow.target_hash)
        ):
            edges.setdefault(source, []).append(target)

        reachable: set[str] = set()
        stack = list(session.execute(select(RefRow.target_hash)).scalars())
        while stack:
            current = stack.pop()
            if current in reachable:
                continue
            reachable.add(current)
            stack.extend(edges.get(current, ()))

        return all_objects - reachable

    # -- Helpers --------------------------------------------------------

    @staticmethod
    def _check(handle: RepositoryHandle) -> SqliteRepositoryHandle:
        if not isinstance(handle, SqliteRepositoryHandle):
            raise TypeError(
                f"Expected SqliteRepositoryHandle, got {type(handle).__name__}"
            )
        return handle
