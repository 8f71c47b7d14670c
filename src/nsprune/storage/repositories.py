"""Abstract repository storage interface for nsprune.

Defines the ABC every storage backend implements. No SQLAlchemy or
subprocess imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py and git.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from pathlib import Path

    from nsprune.models.reference import RefName, Reference
    from nsprune.models.result import CompactionStats


@dataclass
class RepositoryHandle:
    """An open repository, owned by one run until closed.

    Backends subclass this to carry their own connection state.
    """

    rid: str
    path: Path


class RepositoryStorage(ABC):
    """Abstract interface for a repository's reference and object store."""

    name: str = "abstract"

    @abstractmethod
    def open(self, storage_root: Path, rid: str) -> RepositoryHandle:
        """Open the repository *rid* under *storage_root*.

        Raises RepositoryNotFoundError if no such storage exists.
        """
        ...

    @abstractmethod
    def list_references(self, handle: RepositoryHandle) -> Iterator[Reference]:
        """Yield every reference currently stored, in store order.

        The iterator is single-pass. Raises StorageReadError if the store
        cannot be read.
        """
        ...

    @abstractmethod
    def delete_reference(self, handle: RepositoryHandle, name: RefName) -> None:
        """Delete one reference as a single atomic store operation.

        Raises ReferenceDeleteError on failure, LockContentionError if the
        store is locked by another process.
        """
        ...

    @abstractmethod
    def compact(self, handle: RepositoryHandle) -> CompactionStats:
        """Reclaim space from objects no longer reachable from any reference.

        Raises CompactionError on failure, LockContentionError if the store
        is locked by another process.
        """
        ...

    def close(self, handle: RepositoryHandle) -> None:
        """Release any resources held by *handle*. No-op by default."""
        return None
