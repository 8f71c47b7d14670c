"""nsprune exception hierarchy.

All nsprune-specific exceptions inherit from NsPruneError.

Structural failures (usage, locating, enumerating) propagate to the caller
and abort a run. Per-operation failures (deleting one reference, compacting)
are caught by the pruner and recorded in its result.
"""


class NsPruneError(Exception):
    """Base exception for all nsprune errors."""


class UsageError(NsPruneError):
    """Raised when the caller supplies missing or malformed arguments.

    Always raised before any storage access is attempted.
    """


class InvalidIdentifierError(UsageError):
    """Raised when a repository or peer identifier is not a single path segment."""

    def __init__(self, kind: str, value: str, reason: str) -> None:
        self.kind = kind
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {kind} identifier {value!r}: {reason}")


class InvalidReferenceNameError(NsPruneError):
    """Raised when a reference name violates git-style naming rules."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid reference name '{name}': {reason}")


class RepositoryNotFoundError(NsPruneError):
    """Raised when no repository storage exists for an identifier."""

    def __init__(self, rid: str, path: object, reason: str = "") -> None:
        self.rid = rid
        self.path = path
        msg = f"Repository not found: {rid} ({path})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StorageReadError(NsPruneError):
    """Raised when a repository's reference store cannot be read.

    ``retryable`` is True when the read was refused because another
    process held the store's lock.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


class ReferenceDeleteError(NsPruneError):
    """Raised when a single reference could not be deleted."""

    def __init__(self, ref_name: str, reason: str) -> None:
        self.ref_name = ref_name
        self.reason = reason
        super().__init__(f"Failed to delete {ref_name}: {reason}")


class LockContentionError(NsPruneError):
    """Raised when the store rejects an operation because it is locked.

    Retryable: the same operation may succeed once the other process
    releases its lock.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        msg = f"Storage is locked by another process during {operation}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class CompactionError(NsPruneError):
    """Raised when storage compaction fails.

    Compaction failure never rolls back reference deletions that already
    completed.
    """
