"""Shared test fixtures for nsprune.

Provides temporary storage roots, populated SQLite repositories, and an
in-memory storage double that records every call made against it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from nsprune.exceptions import (
    LockContentionError,
    ReferenceDeleteError,
    RepositoryNotFoundError,
)
from nsprune.models.config import PruneConfig
from nsprune.models.reference import RefName, Reference
from nsprune.models.result import CompactionStats
from nsprune.storage.engine import init_store
from nsprune.storage.repositories import RepositoryHandle, RepositoryStorage
from nsprune.storage.sqlite import SqliteRepositoryStorage


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Node home with an empty storage directory."""
    path = tmp_path / "radicle"
    (path / "storage").mkdir(parents=True)
    return path


@pytest.fixture
def storage_root(home: Path) -> Path:
    return home / "storage"


@pytest.fixture
def config(home: Path) -> PruneConfig:
    """Config pointing at the temporary home, with no lock backoff."""
    return PruneConfig(home=home, lock_wait_max=0.0)


@pytest.fixture
def sqlite_storage() -> SqliteRepositoryStorage:
    return SqliteRepositoryStorage(busy_timeout_ms=50)


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------

SCENARIO_REFS = (
    "namespaces/p1/heads/main",
    "namespaces/p2/heads/main",
    "refs/heads/master",
)


def make_sqlite_repo(
    storage_root: Path, rid: str, ref_names: tuple[str, ...] | list[str]
) -> dict[str, str]:
    """Create a SQLite repository with one commit object per ref.

    Every commit links to a shared root object, so compaction can only
    remove the per-ref commits.

    Returns:
        Mapping of ref name to target hash.
    """
    init_store(storage_root / rid)
    storage = SqliteRepositoryStorage()
    handle = storage.open(storage_root, rid)
    try:
        root = storage.write_object(handle, "tree", b"shared root")
        targets = {}
        for name in ref_names:
            target = storage.write_object(
                handle, "commit", f"commit for {name}".encode(), links=[root]
            )
            storage.update_reference(handle, name, target)
            targets[name] = target
        return targets
    finally:
        storage.close(handle)


def read_sqlite_refs(storage_root: Path, rid: str) -> dict[str, str]:
    """Snapshot of every ref in a SQLite repository: name -> target."""
    storage = SqliteRepositoryStorage()
    handle = storage.open(storage_root, rid)
    try:
        return {str(ref.name): ref.target for ref in storage.list_references(handle)}
    finally:
        storage.close(handle)


class MemoryStorage(RepositoryStorage):
    """In-memory storage double that records every call.

    Args:
        refs: Initial references, name -> target.
        fail: Names whose deletion raises ReferenceDeleteError.
        locked: Name -> number of LockContentionErrors raised before the
            deletion succeeds (use a large number to never succeed).
        compact_error: Exception raised by compact(), if any.
        read_error: Exception raised while enumerating, if any.
        exists: If False, open() raises RepositoryNotFoundError.
    """

    name = "memory"

    def __init__(
        self,
        refs: dict[str, str] | None = None,
        *,
        fail: set[str] | None = None,
        locked: dict[str, int] | None = None,
        compact_error: Exception | None = None,
        read_error: Exception | None = None,
        exists: bool = True,
    ) -> None:
        self.refs = dict(refs or {})
        self.fail = set(fail or ())
        self.locked = dict(locked or {})
        self.compact_error = compact_error
        self.read_error = read_error
        self.exists = exists
        self.calls: list[tuple] = []

    def open(self, storage_root: Path, rid: str) -> RepositoryHandle:
        self.calls.append(("open", rid))
        if not self.exists:
            raise RepositoryNotFoundError(rid, Path(storage_root) / rid)
        return RepositoryHandle(rid=rid, path=Path(storage_root) / rid)

    def list_references(self, handle: RepositoryHandle) -> Iterator[Reference]:
        self.calls.append(("list",))
        if self.read_error is not None:
            raise self.read_error
        for name, target in list(self.refs.items()):
            yield Reference(RefName.parse(name), target)

    def delete_reference(self, handle: RepositoryHandle, name: RefName) -> None:
        key = str(name)
        self.calls.append(("delete", key))
        if self.locked.get(key, 0) > 0:
            self.locked[key] -= 1
            raise LockContentionError("delete", key)
        if key in self.fail:
            raise ReferenceDeleteError(key, "simulated failure")
        if key not in self.refs:
            raise ReferenceDeleteError(key, "reference does not exist")
        del self.refs[key]

    def compact(self, handle: RepositoryHandle) -> CompactionStats:
        self.calls.append(("compact",))
        if self.compact_error is not None:
            raise self.compact_error
        return CompactionStats(objects_removed=0, bytes_reclaimed=0)

    def close(self, handle: RepositoryHandle) -> None:
        self.calls.append(("close",))

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)
