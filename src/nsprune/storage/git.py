"""Git implementation of the repository storage interface.

Shells out to the ``git`` executable: ``for-each-ref`` to enumerate,
``update-ref --no-deref -d`` to delete, ``gc`` to compact.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

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
from nsprune.storage.locator import is_git_repository, locate
from nsprune.storage.repositories import RepositoryHandle, RepositoryStorage

logger = logging.getLogger(__name__)

_LOCK_PATTERNS = re.compile(
    r"cannot lock ref|\.lock'?: File exists|Unable to create .*\.lock|gc is already running",
    re.IGNORECASE,
)


class GitNotAvailableError(StorageReadError):
    """Raised when the ``git`` executable cannot be run."""


def run_git(args: List[str], cwd: Path) -> subprocess.CompletedProcess:
    """Run git in *cwd* and capture its output.

    Output is decoded with ``surrogateescape`` so ref names that are not
    valid UTF-8 survive the round trip: passing such a name back as an
    argument re-encodes it to the original bytes.
    """
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="surrogateescape",
            check=False,
        )
    except FileNotFoundError as e:
        raise GitNotAvailableError("git executable not found on PATH") from e


def is_lock_failure(stderr: str) -> bool:
    return bool(_LOCK_PATTERNS.search(stderr))


def count_objects(path: Path) -> Dict[str, int]:
    """Parse ``git count-objects -v`` into a dict of integer fields."""
    result = run_git(["count-objects", "-v"], cwd=path)
    if result.returncode != 0:
        return {}
    counts: Dict[str, int] = {}
    for line in result.stdout.splitlines():
        key, _, value = line.partition(":")
        try:
            counts[key.strip()] = int(value.strip())
        except ValueError:
            continue
    return counts


def _total_objects(counts: Dict[str, int]) -> int:
    return counts.get("count", 0) + counts.get("in-pack", 0)


def _total_bytes(counts: Dict[str, int]) -> int:
    kib = counts.get("size", 0) + counts.get("size-pack", 0) + counts.get("size-garbage", 0)
    return kib * 1024


@dataclass
class GitRepositoryHandle(RepositoryHandle):
    """Open git repository (bare or with a work tree)."""


class GitRepositoryStorage(RepositoryStorage):
    """Reference store backed by a real git repository.

    Args:
        prune_expiry: Passed to ``git gc --prune=<expiry>`` when set.
            When None, git's own ``gc.pruneExpire`` applies.
    """

    name = "git"

    def __init__(self, *, prune_expiry: Optional[str] = None) -> None:
        self._prune_expiry = prune_expiry

    def open(self, storage_root: Path, rid: str) -> GitRepositoryHandle:
        path = locate(storage_root, rid)
        if not is_git_repository(path):
            raise RepositoryNotFoundError(rid, path, "not a git repository")
        result = run_git(["rev-parse", "--git-dir"], cwd=path)
        if result.returncode != 0:
            raise RepositoryNotFoundError(rid, path, result.stderr.strip())
        return GitRepositoryHandle(rid=rid, path=path)

    def list_references(self, handle: RepositoryHandle) -> Iterator[Reference]:
        result = run_git(
            ["for-each-ref", "--format=%(objectname) %(refname)"], cwd=handle.path
        )
        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise StorageReadError(
                f"git for-each-ref failed: {stderr}", retryable=is_lock_failure(stderr)
            )
        for line in result.stdout.splitlines():
            if not line:
                continue
            target, _, ref_name = line.partition(" ")
            try:
                yield Reference(RefName.parse(ref_name), target)
            except InvalidReferenceNameError as e:
                raise StorageReadError(f"Unexpected reference name from git: {e}") from e

    def delete_reference(self, handle: RepositoryHandle, name: RefName) -> None:
        ref_name = str(name)
        # %(refname) names a symbolic ref itself, not its target; the pattern
        # also matches refs below the name, so compare exactly
        exists = run_git(["for-each-ref", "--format=%(refname)", ref_name], cwd=handle.path)
        if exists.returncode != 0 or ref_name not in exists.stdout.splitlines():
            raise ReferenceDeleteError(ref_name, "reference does not exist")

        result = run_git(["update-ref", "--no-deref", "-d", ref_name], cwd=handle.path)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if is_lock_failure(stderr):
                raise LockContentionError("delete", stderr)
            raise ReferenceDeleteError(ref_name, stderr or f"exit status {result.returncode}")

    def compact(self, handle: RepositoryHandle) -> CompactionStats:
        before = count_objects(handle.path)

        args = ["gc", "--quiet"]
        if self._prune_expiry is not None:
            args.append(f"--prune={self._prune_expiry}")
        result = run_git(args, cwd=handle.path)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if is_lock_failure(stderr):
                raise LockContentionError("compact", stderr)
            raise CompactionError(f"git gc failed: {stderr or result.returncode}")
        if result.stderr.strip():
            logger.debug("git gc: %s", result.stderr.strip())

        after = count_objects(handle.path)
        if not before or not after:
            return CompactionStats()
        return CompactionStats(
            objects_removed=max(0, _total_objects(before) - _total_objects(after)),
            bytes_reclaimed=max(0, _total_bytes(before) - _total_bytes(after)),
        )
