"""Backup-ref maintenance — inspect, restore or drop the pre-rewrite tip.

Every non-empty rewrite leaves ``refs/original/refs/heads/<branch>`` at the
tip it replaced, and a second rewrite refuses to start while that ref is
present.  These helpers are the way out:

- :func:`show_backup`    — where the backup points, and where the branch is.
- :func:`restore_backup` — compare-and-swap the branch back onto the backup,
  then delete the backup ref.
- :func:`drop_backup`    — accept the rewrite and delete the backup ref.

Boundary rules:
  - No Typer imports.
  - Talks to storage only through :class:`~retcon.storage.HistoryStore`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from retcon.errors import NoBackupRef, RefUpdateConflict, RetconError
from retcon.storage import HistoryStore, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupStatus:
    """Snapshot of a branch and its backup ref.

    Attributes:
        branch:     Branch name.
        backup_ref: Full backup ref name.
        backup_tip: Identity the backup points at (``None`` when absent).
        branch_tip: Identity the branch currently points at.
    """

    branch: str
    backup_ref: str
    backup_tip: str | None
    branch_tip: str | None

    @property
    def exists(self) -> bool:
        return self.backup_tip is not None


def show_backup(store: HistoryStore, backup_ref: str) -> BackupStatus:
    branch = store.current_branch()
    return BackupStatus(
        branch=branch,
        backup_ref=backup_ref,
        backup_tip=store.read_ref(backup_ref),
        branch_tip=store.read_ref(f"refs/heads/{branch}"),
    )


def restore_backup(store: HistoryStore, backup_ref: str, *, stash_message: str) -> BackupStatus:
    """Move the current branch back to its backup and delete the backup ref.

    Uncommitted work is stashed around the move, as in a rewrite.

    Raises:
        NoBackupRef:       there is nothing to restore.
        RefUpdateConflict: the branch moved while restoring.
    """
    status = show_backup(store, backup_ref)
    if status.backup_tip is None:
        raise NoBackupRef(backup_ref)
    branch_ref = f"refs/heads/{status.branch}"
    expected = status.branch_tip or ""

    try:
        handle = store.stash_save(stash_message)
    except StorageError as exc:
        raise RetconError(f"Could not stash uncommitted changes: {exc}") from exc

    try:
        store.update_ref(branch_ref, expected, status.backup_tip)
    except StorageError as exc:
        if handle is not None:
            _restore(store, handle)
        raise RefUpdateConflict(branch_ref, expected, exc) from exc

    synced = True
    try:
        store.sync_worktree(branch_ref, expected, status.backup_tip)
    except StorageError as exc:
        synced = False
        logger.warning("⚠️ %s restored but the working tree was not updated: %s", branch_ref, exc)

    try:
        store.delete_ref(backup_ref)
    except StorageError as exc:
        logger.warning("⚠️ Branch restored but %s could not be deleted: %s", backup_ref, exc)
    if handle is not None:
        if synced:
            _restore(store, handle)
        else:
            logger.warning("⚠️ Keeping stash %s until the working tree is fixed", handle[:7])

    logger.info("✅ Restored %s to %s", branch_ref, status.backup_tip[:7])
    return BackupStatus(
        branch=status.branch,
        backup_ref=backup_ref,
        backup_tip=None,
        branch_tip=status.backup_tip,
    )


def drop_backup(store: HistoryStore, backup_ref: str) -> str:
    """Delete the backup ref; return the identity it pointed at."""
    target = store.read_ref(backup_ref)
    if target is None:
        raise NoBackupRef(backup_ref)
    try:
        store.delete_ref(backup_ref)
    except StorageError as exc:
        raise RetconError(f"Could not delete {backup_ref}: {exc}") from exc
    logger.info("✅ Dropped %s (%s)", backup_ref, target[:7])
    return target


def _restore(store: HistoryStore, handle: str) -> None:
    try:
        store.stash_restore(handle)
    except StorageError as exc:
        logger.warning("⚠️ Could not restore stash %s: %s. Use 'git stash pop' manually.", handle[:7], exc)
