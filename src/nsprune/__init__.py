"""nsprune: remove a peer's namespaced references from a repository.

Deletes every reference under ``namespaces/<peer>/`` in one repository's
reference store, then compacts the store to reclaim the space.
"""

import logging

from nsprune._version import __version__

# Core entry point
from nsprune.operations.prune import (
    compact_repository,
    lock_retryer,
    prune_namespace,
    prune_references,
)
from nsprune.operations.filter import filter_namespace

# Domain models
from nsprune.models.reference import NamespacePattern, RefName, Reference
from nsprune.models.result import (
    CompactionResult,
    CompactionStats,
    DeletionOutcome,
    PruneResult,
    PruneStage,
)

# Configuration
from nsprune.models.config import PruneConfig

# Storage
from nsprune.storage.repositories import RepositoryHandle, RepositoryStorage
from nsprune.storage.sqlite import SqliteRepositoryStorage
from nsprune.storage.git import GitRepositoryStorage
from nsprune.storage.locator import locate, select_storage

# Exceptions
from nsprune.exceptions import (
    CompactionError,
    InvalidIdentifierError,
    InvalidReferenceNameError,
    LockContentionError,
    NsPruneError,
    ReferenceDeleteError,
    RepositoryNotFoundError,
    StorageReadError,
    UsageError,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "prune_namespace",
    "prune_references",
    "compact_repository",
    "lock_retryer",
    "filter_namespace",
    "NamespacePattern",
    "RefName",
    "Reference",
    "CompactionResult",
    "CompactionStats",
    "DeletionOutcome",
    "PruneResult",
    "PruneStage",
    "PruneConfig",
    "RepositoryHandle",
    "RepositoryStorage",
    "SqliteRepositoryStorage",
    "GitRepositoryStorage",
    "locate",
    "select_storage",
    "CompactionError",
    "InvalidIdentifierError",
    "InvalidReferenceNameError",
    "LockContentionError",
    "NsPruneError",
    "ReferenceDeleteError",
    "RepositoryNotFoundError",
    "StorageReadError",
    "UsageError",
]
