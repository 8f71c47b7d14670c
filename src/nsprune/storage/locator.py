"""Repository locator: identifier -> on-disk location -> storage backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from nsprune.exceptions import RepositoryNotFoundError, UsageError
from nsprune.models.reference import validate_identifier
from nsprune.storage.engine import store_path

if TYPE_CHECKING:
    from nsprune.storage.repositories import RepositoryStorage

logger = logging.getLogger(__name__)


def locate(storage_root: Path, rid: str) -> Path:
    """Return the directory holding repository *rid*.

    Raises:
        InvalidIdentifierError: If *rid* is not a single path segment.
        RepositoryNotFoundError: If no directory exists for *rid*.
    """
    validate_identifier("repository", rid)
    path = Path(storage_root) / rid
    if not path.is_dir():
        raise RepositoryNotFoundError(rid, path)
    return path


def is_git_repository(path: Path) -> bool:
    """True for a bare git repository or a work tree with a ``.git`` entry."""
    if (path / ".git").exists():
        return True
    return (path / "HEAD").is_file() and (path / "objects").is_dir()


def detect_backend(path: Path) -> str | None:
    """Name of the backend whose layout *path* has, or None."""
    if store_path(path).is_file():
        return "sqlite"
    if is_git_repository(path):
        return "git"
    return None


def select_storage(
    storage_root: Path, rid: str, backend: str = "auto"
) -> RepositoryStorage:
    """Pick the storage backend for repository *rid*.

    With ``backend="auto"`` the repository directory is inspected: a
    ``store.db`` selects the SQLite backend, a git layout selects the git
    backend.

    Raises:
        UsageError: If *backend* is not a known backend name.
        RepositoryNotFoundError: If the repository does not exist, or
            auto-detection finds no known layout.
    """
    from nsprune.storage.git import GitRepositoryStorage
    from nsprune.storage.sqlite import SqliteRepositoryStorage

    backends = {
        "sqlite": SqliteRepositoryStorage,
        "git": GitRepositoryStorage,
    }
    if backend != "auto" and backend not in backends:
        raise UsageError(f"Unknown storage backend: {backend!r}")

    path = locate(storage_root, rid)
    if backend == "auto":
        detected = detect_backend(path)
        if detected is None:
            raise RepositoryNotFoundError(rid, path, "no reference store or git repository")
        backend = detected
        logger.debug("Detected %s storage at %s", backend, path)

    return backends[backend]()
