"""Result models for namespace pruning.

Frozen dataclasses describing what a prune run attempted and what happened.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from nsprune.models.reference import RefName


class PruneStage(str, enum.Enum):
    """Stages a prune run passes through, in order."""

    IDLE = "idle"
    ENUMERATING = "enumerating"
    FILTERING = "filtering"
    DELETING = "deleting"
    COMPACTING = "compacting"
    DONE = "done"


@dataclass(frozen=True)
class DeletionOutcome:
    """Outcome of one attempted reference deletion."""

    name: RefName
    deleted: bool
    error: Optional[str] = None
    retryable: bool = False


@dataclass(frozen=True)
class CompactionStats:
    """What a storage backend reports after a successful compaction.

    Either field is None when the backend cannot measure it.
    """

    objects_removed: Optional[int] = None
    bytes_reclaimed: Optional[int] = None


@dataclass(frozen=True)
class CompactionResult:
    """Result of the single compaction pass that ends every prune run."""

    ok: bool
    stats: Optional[CompactionStats] = None
    error: Optional[str] = None
    retryable: bool = False
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class PruneResult:
    """Result of pruning one peer namespace from one repository.

    ``matched`` lists every reference the namespace filter selected.
    ``outcomes`` holds one entry per attempted deletion, in attempt order;
    it is empty for a dry run.
    """

    repository: str
    peer: str
    matched: tuple[RefName, ...]
    outcomes: tuple[DeletionOutcome, ...]
    compaction: Optional[CompactionResult]

    @property
    def deleted(self) -> list[RefName]:
        """Names of the references that were actually removed."""
        return [o.name for o in self.outcomes if o.deleted]

    @property
    def failed(self) -> list[DeletionOutcome]:
        return [o for o in self.outcomes if not o.deleted]

    @property
    def ok(self) -> bool:
        """True when every deletion succeeded and compaction (if run) succeeded."""
        if self.failed:
            return False
        return self.compaction is None or self.compaction.ok
