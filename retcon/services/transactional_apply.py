"""Transactional Apply — the five-step protocol that publishes a rewrite.

Steps, in strict order::

    1. stash      — shelve uncommitted work (skipped when the tree is clean)
    2. backup     — create refs/original/refs/heads/<branch> at the old tip
    3. rewrite    — write the new commit objects (CommitRewriter)
    4. swap       — compare-and-swap refs/heads/<branch> old tip → new tip
    5. unstash    — re-apply the shelved work

A failure in steps 1–4 aborts the later steps and undoes the completed ones
in reverse: the backup ref is deleted and the stash restored.  Rollback is
best-effort; a failure while undoing a step is logged and never masks the
error that triggered the rollback.  A failure in step 5 does not undo the
rewrite — it is returned as a :class:`~retcon.errors.StashRestoreFailed`
warning on the :class:`ApplyOutcome`.

After step 4 the store updates the checked-out files to the new tip.  If
that fails the rewrite still stands: a
:class:`~retcon.errors.WorktreeSyncFailed` warning is returned and the
stash is kept rather than popped onto the stale tree.

SIGINT received once step 2 has begun is held until the protocol finishes
(success or rollback) and then re-raised as ``KeyboardInterrupt``.

Boundary rules:
  - No Typer imports.
  - Talks to storage only through :class:`~retcon.storage.HistoryStore`.
"""
from __future__ import annotations

import contextlib
import logging
import signal
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from types import FrameType

from retcon.errors import (
    BackupRefExists,
    DirtyTreeStashFailed,
    RefUpdateConflict,
    RetconError,
    RewriteFailed,
    StashRestoreFailed,
    WorktreeSyncFailed,
)
from retcon.services.commit_rewriter import execute_plan
from retcon.services.rewrite_planner import RewritePlan
from retcon.storage import HistoryStore, RefExistsError, StorageError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApplyOutcome:
    """What a completed apply changed.

    Attributes:
        branch:       Branch that was rewritten.
        old_tip:      Tip before the rewrite (also the backup ref target).
        new_tip:      Tip after the rewrite.
        identity_map: ``original -> new`` for every rewritten commit.
        backup_ref:   Name of the backup ref, or ``None`` for a no-op.
        warnings:     Non-fatal problems (worktree not updated, stash not restored).
    """

    branch: str
    old_tip: str | None
    new_tip: str | None
    identity_map: dict[str, str] = field(default_factory=dict)
    backup_ref: str | None = None
    warnings: tuple[RetconError, ...] = ()

    @property
    def noop(self) -> bool:
        return self.backup_ref is None


# ---------------------------------------------------------------------------
# Interrupt deferral
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def defer_interrupts() -> Iterator[list[int]]:
    """Hold SIGINT for the duration of the block, then re-raise it.

    Only the main thread can install signal handlers; elsewhere this is a
    plain pass-through.  If the block raises, the pending interrupt is
    logged and the block's own exception propagates.
    """
    received: list[int] = []
    if threading.current_thread() is not threading.main_thread():
        yield received
        return

    def _hold(signum: int, frame: FrameType | None) -> None:
        received.append(signum)
        logger.warning("⚠️ Interrupt received — finishing history rewrite first")

    try:
        previous = signal.signal(signal.SIGINT, _hold)
    except (ValueError, AttributeError):
        yield received
        return

    try:
        yield received
    except BaseException:
        if received:
            logger.warning("⚠️ Interrupt held during rollback; reporting the rollback error")
        raise
    finally:
        signal.signal(signal.SIGINT, previous)
    if received:
        raise KeyboardInterrupt


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


def apply_plan(
    store: HistoryStore,
    plan: RewritePlan,
    *,
    backup_ref: str,
    stash_message: str,
) -> ApplyOutcome:
    """Publish *plan* on its branch, or leave the repository as it was.

    Raises:
        DirtyTreeStashFailed: step 1 failed; nothing was touched.
        BackupRefExists:      step 2 found an unresolved earlier backup.
        RewriteFailed:        step 3 failed; backup removed, stash restored.
        RefUpdateConflict:    step 4 lost the compare-and-swap.
    """
    if plan.is_empty:
        logger.info("✅ Nothing to rewrite on %s", plan.branch)
        return ApplyOutcome(branch=plan.branch, old_tip=plan.base_tip, new_tip=plan.base_tip)
    if plan.base_tip is None:
        raise RetconError(f"Branch {plan.branch!r} has no tip to rewrite")

    branch_ref = f"refs/heads/{plan.branch}"

    # Step 1: stash.
    try:
        handle = store.stash_save(stash_message)
    except StorageError as exc:
        logger.error("❌ Stash failed: %s", exc)
        raise DirtyTreeStashFailed(exc) from exc
    if handle is not None:
        logger.info("✅ Stashed uncommitted changes (%s)", handle[:7])

    with defer_interrupts():
        # Step 2: backup ref.
        try:
            store.create_ref(backup_ref, plan.base_tip)
        except RefExistsError as exc:
            _restore_stash_quietly(store, handle)
            raise BackupRefExists(backup_ref) from exc
        except StorageError as exc:
            _restore_stash_quietly(store, handle)
            raise RetconError(f"Could not create backup ref {backup_ref!r}: {exc}") from exc
        logger.info("✅ Backup ref %s → %s", backup_ref, plan.base_tip[:7])

        # Step 3: write commits.
        try:
            result = execute_plan(store, plan)
        except RewriteFailed:
            _rollback(store, backup_ref, handle)
            raise

        new_tip = result.new_tip
        if new_tip is None:
            _rollback(store, backup_ref, handle)
            raise RetconError("Rewrite produced no tip")

        # Step 4: compare-and-swap the branch.
        try:
            store.update_ref(branch_ref, plan.base_tip, new_tip)
        except StorageError as exc:
            logger.error("❌ Could not move %s: %s", branch_ref, exc)
            _rollback(store, backup_ref, handle)
            raise RefUpdateConflict(branch_ref, plan.base_tip, exc) from exc
        logger.info("✅ %s: %s → %s", branch_ref, plan.base_tip[:7], new_tip[:7])

        warnings: list[RetconError] = []
        try:
            store.sync_worktree(branch_ref, plan.base_tip, new_tip)
        except StorageError as exc:
            logger.warning("⚠️ %s moved but the working tree was not updated: %s", branch_ref, exc)
            warnings.append(WorktreeSyncFailed(branch_ref, plan.base_tip, new_tip, exc))

        # Step 5: unstash.
        if handle is not None:
            if warnings:
                # Popping onto a stale index would mix old and new trees.
                logger.warning("⚠️ Keeping stash %s until the working tree is fixed", handle[:7])
                warnings.append(StashRestoreFailed(handle, RuntimeError("working tree not updated")))
            else:
                warning = _restore_stash(store, handle)
                if warning is not None:
                    warnings.append(warning)

    return ApplyOutcome(
        branch=plan.branch,
        old_tip=plan.base_tip,
        new_tip=new_tip,
        identity_map=result.identity_map,
        backup_ref=backup_ref,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _restore_stash(store: HistoryStore, handle: str) -> StashRestoreFailed | None:
    try:
        store.stash_restore(handle)
    except StorageError as exc:
        logger.warning("⚠️ Could not restore stash %s: %s", handle[:7], exc)
        return StashRestoreFailed(handle, exc)
    logger.info("✅ Restored stashed changes (%s)", handle[:7])
    return None


def _restore_stash_quietly(store: HistoryStore, handle: str | None) -> None:
    if handle is not None:
        _restore_stash(store, handle)


def _rollback(store: HistoryStore, backup_ref: str, handle: str | None) -> None:
    """Undo steps 2 and 1; each undo is attempted independently."""
    try:
        store.delete_ref(backup_ref)
    except StorageError as exc:
        logger.warning("⚠️ Rollback could not delete %s: %s", backup_ref, exc)
    else:
        logger.info("✅ Rollback removed %s", backup_ref)
    _restore_stash_quietly(store, handle)
