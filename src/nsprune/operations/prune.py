"""Namespace pruning and compaction.

Composes the storage interface into the full pipeline:
locate -> open -> enumerate -> filter -> delete each -> compact once.

Structural failures (bad identifiers, missing repository, unreadable store)
propagate and abort the run before any deletion. Once the matched set is
known every deletion is attempted independently, and compaction runs after
the last attempt whatever the individual outcomes were.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Iterable, Optional

import tenacity

from nsprune.exceptions import LockContentionError, NsPruneError
from nsprune.models.config import PruneConfig
from nsprune.models.reference import NamespacePattern, Reference, validate_identifier
from nsprune.models.result import (
    CompactionResult,
    DeletionOutcome,
    PruneResult,
    PruneStage,
)
from nsprune.operations.filter import filter_namespace
from nsprune.storage.locator import select_storage

if TYPE_CHECKING:
    from nsprune.storage.repositories import RepositoryHandle, RepositoryStorage

logger = logging.getLogger(__name__)

DeleteCallback = Callable[[DeletionOutcome], None]


def lock_retryer(attempts: int = 1, wait_max: float = 2.0) -> tenacity.Retrying:
    """Retry policy for operations refused by a storage lock.

    Only LockContentionError is retried; after *attempts* tries the last
    error is re-raised.
    """
    return tenacity.Retrying(
        retry=tenacity.retry_if_exception_type(LockContentionError),
        wait=tenacity.wait_exponential(multiplier=0.1, max=wait_max),
        stop=tenacity.stop_after_attempt(attempts),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _call(retry: Optional[tenacity.Retrying], fn: Callable, *args: object) -> object:
    if retry is None:
        return fn(*args)
    return retry.copy()(fn, *args)


def prune_references(
    storage: RepositoryStorage,
    handle: RepositoryHandle,
    references: Iterable[Reference],
    *,
    on_delete: Optional[DeleteCallback] = None,
    retry: Optional[tenacity.Retrying] = None,
) -> tuple[DeletionOutcome, ...]:
    """Delete each reference in turn, recording every attempt.

    A failed deletion never stops the loop.  Each outcome is passed to
    *on_delete* as soon as the attempt returns.

    Returns:
        One DeletionOutcome per reference, in attempt order.
    """
    outcomes: list[DeletionOutcome] = []
    for ref in references:
        try:
            _call(retry, storage.delete_reference, handle, ref.name)
        except LockContentionError as e:
            logger.warning("Lock contention deleting %s: %s", ref.name, e)
            outcome = DeletionOutcome(ref.name, deleted=False, error=str(e), retryable=True)
        except NsPruneError as e:
            logger.warning("Failed to delete %s: %s", ref.name, e)
            outcome = DeletionOutcome(ref.name, deleted=False, error=str(e))
        else:
            logger.info("Deleted %s (was %s)", ref.name, ref.target)
            outcome = DeletionOutcome(ref.name, deleted=True)

        outcomes.append(outcome)
        if on_delete is not None:
            on_delete(outcome)
    return tuple(outcomes)


def compact_repository(
    storage: RepositoryStorage,
    handle: RepositoryHandle,
    *,
    retry: Optional[tenacity.Retrying] = None,
) -> CompactionResult:
    """Run compaction once and capture its outcome.

    Failures are returned in the result rather than raised; completed
    deletions are never rolled back.
    """
    start = time.monotonic()
    try:
        stats = _call(retry, storage.compact, handle)
    except LockContentionError as e:
        logger.warning("Lock contention during compaction: %s", e)
        return CompactionResult(
            ok=False, error=str(e), retryable=True,
            duration_seconds=time.monotonic() - start,
        )
    except NsPruneError as e:
        logger.warning("Compaction failed: %s", e)
        return CompactionResult(
            ok=False, error=str(e), duration_seconds=time.monotonic() - start,
        )

    duration = time.monotonic() - start
    logger.info("Compaction finished in %.3fs: %s", duration, stats)
    return CompactionResult(ok=True, stats=stats, duration_seconds=duration)


def prune_namespace(
    rid: str,
    peer: str,
    *,
    config: Optional[PruneConfig] = None,
    storage: Optional[RepositoryStorage] = None,
    on_delete: Optional[DeleteCallback] = None,
) -> PruneResult:
    """Remove every reference under ``namespaces/<peer>/`` in repository *rid*.

    Args:
        rid: Repository identifier under the storage root.
        peer: Peer identifier whose namespace is pruned.
        config: Run configuration. Defaults to ``PruneConfig()`` (home from
            ``RAD_HOME`` or ``~/.radicle``).
        storage: Storage backend. Auto-selected from the repository layout
            when omitted.
        on_delete: Called with each DeletionOutcome as it happens.

    Returns:
        PruneResult with one outcome per matched reference and the
        compaction result (None for a dry run).

    Raises:
        UsageError: If an identifier is invalid. No storage is touched.
        RepositoryNotFoundError: If the repository does not exist.
        StorageReadError: If the references cannot be enumerated.
    """
    config = config or PruneConfig()
    validate_identifier("repository", rid)
    pattern = NamespacePattern(peer)

    stage = PruneStage.IDLE
    if storage is None:
        storage = select_storage(config.storage_root, rid, config.backend)

    handle = storage.open(config.storage_root, rid)
    try:
        stage = _advance(stage, PruneStage.ENUMERATING, rid)
        references = storage.list_references(handle)

        stage = _advance(stage, PruneStage.FILTERING, rid)
        matched = tuple(filter_namespace(references, pattern))
        logger.info(
            "%d reference(s) in %s match %s", len(matched), rid, pattern
        )

        if config.dry_run:
            stage = _advance(stage, PruneStage.DONE, rid)
            return PruneResult(
                repository=rid,
                peer=peer,
                matched=tuple(ref.name for ref in matched),
                outcomes=(),
                compaction=None,
            )

        retry = lock_retryer(config.lock_retries, config.lock_wait_max)

        stage = _advance(stage, PruneStage.DELETING, rid)
        outcomes = prune_references(
            storage, handle, matched, on_delete=on_delete, retry=retry
        )

        stage = _advance(stage, PruneStage.COMPACTING, rid)
        compaction = compact_repository(storage, handle, retry=retry)

        stage = _advance(stage, PruneStage.DONE, rid)
    except NsPruneError:
        logger.debug("%s: aborted while %s", rid, stage.value)
        raise
    finally:
        storage.close(handle)

    return PruneResult(
        repository=rid,
        peer=peer,
        matched=tuple(ref.name for ref in matched),
        outcomes=outcomes,
        compaction=compaction,
    )


def _advance(current: PruneStage, nxt: PruneStage, rid: str) -> PruneStage:
    logger.debug("%s: %s -> %s", rid, current.value, nxt.value)
    return nxt
