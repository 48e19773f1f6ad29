"""Tests for the five-step apply protocol and its rollback.

Verifies:
- test_apply_success_moves_branch_and_keeps_backup — branch at new tip, backup at old tip
- test_apply_stashes_and_restores_dirty_tree        — stash before, unstash after
- test_apply_empty_plan_is_noop                     — no storage calls at all
- test_stash_failure_aborts_before_history          — DirtyTreeStashFailed, no refs created
- test_existing_backup_ref_refuses_and_unstashes    — BackupRefExists, stash restored
- test_rewrite_failure_rolls_back                   — backup deleted, stash restored, RewriteFailed
- test_ref_conflict_rolls_back                      — RefUpdateConflict, branch untouched
- test_stash_restore_failure_is_a_warning           — rewrite stands, warning returned
- test_rollback_error_does_not_mask_original        — failing delete_ref is logged only
- test_defer_interrupts_reraises_after_block        — SIGINT held then raised as KeyboardInterrupt
- test_worktree_sync_failure_is_a_warning_and_keeps_stash — branch stays moved, stash not popped
- test_apply_syncs_worktree_after_branch_moves      — checked-out files follow the new tip
"""
from __future__ import annotations

import os
import signal

import pytest

from conftest import FakeHistoryStore
from retcon.errors import (
    BackupRefExists,
    DirtyTreeStashFailed,
    RefUpdateConflict,
    RewriteFailed,
    StashRestoreFailed,
    WorktreeSyncFailed,
)
from retcon.models import EditableField, GraphSnapshot
from retcon.services.pending_changes import PendingChangeStore
from retcon.services.rewrite_planner import RewritePlan, plan_rewrite
from retcon.services.transactional_apply import ApplyOutcome, apply_plan, defer_interrupts

BACKUP = "refs/original/refs/heads/main"
STASH_MSG = "retcon: auto-stash before history rewrite"


def _plan(store: FakeHistoryStore, commit_id: str) -> RewritePlan:
    changes = PendingChangeStore(GraphSnapshot.from_commits("main", store.load_history(50)))
    changes.set_field(commit_id, EditableField.MESSAGE, "reworded")
    return plan_rewrite(changes.snapshot, changes)


def _apply(store: FakeHistoryStore, plan: RewritePlan) -> ApplyOutcome:
    return apply_plan(store, plan, backup_ref=BACKUP, stash_message=STASH_MSG)


def test_apply_success_moves_branch_and_keeps_backup(
    store: FakeHistoryStore, linear3: list[str]
) -> None:
    old_tip = store.tip
    outcome = _apply(store, _plan(store, linear3[1]))

    assert store.tip == outcome.new_tip != old_tip
    assert store.refs[BACKUP] == old_tip
    assert outcome.old_tip == old_tip
    assert outcome.backup_ref == BACKUP
    assert outcome.warnings == ()
    assert not outcome.noop


def test_apply_stashes_and_restores_dirty_tree(
    store: FakeHistoryStore, linear3: list[str]
) -> None:
    store.dirty = True
    _apply(store, _plan(store, linear3[1]))

    assert store.calls[0] == "stash_save"
    assert store.calls[-1] == "stash_restore"
    assert store.dirty
    assert store.stashes == []


def test_apply_empty_plan_is_noop(store: FakeHistoryStore, linear3: list[str]) -> None:
    changes = PendingChangeStore(GraphSnapshot.from_commits("main", store.load_history(50)))
    outcome = _apply(store, plan_rewrite(changes.snapshot, changes))
    assert outcome.noop
    assert outcome.new_tip == outcome.old_tip == linear3[2]
    assert store.calls == []


def test_stash_failure_aborts_before_history(store: FakeHistoryStore, linear3: list[str]) -> None:
    store.fail_stash_save = True
    tip = store.tip
    with pytest.raises(DirtyTreeStashFailed):
        _apply(store, _plan(store, linear3[1]))
    assert BACKUP not in store.refs
    assert store.tip == tip
    assert store.writes == 0


def test_existing_backup_ref_refuses_and_unstashes(
    store: FakeHistoryStore, linear3: list[str]
) -> None:
    store.refs[BACKUP] = linear3[0]
    store.dirty = True
    tip = store.tip
    with pytest.raises(BackupRefExists):
        _apply(store, _plan(store, linear3[1]))
    assert store.refs[BACKUP] == linear3[0]
    assert store.tip == tip
    assert store.dirty
    assert store.writes == 0


def test_rewrite_failure_rolls_back(store: FakeHistoryStore, linear3: list[str]) -> None:
    store.dirty = True
    store.fail_write_at = 1
    tip = store.tip
    with pytest.raises(RewriteFailed):
        _apply(store, _plan(store, linear3[0]))
    assert BACKUP not in store.refs
    assert store.tip == tip
    assert store.dirty
    assert store.stashes == []


def test_ref_conflict_rolls_back(store: FakeHistoryStore, linear3: list[str]) -> None:
    store.dirty = True
    store.conflict_on_update = True
    tip = store.tip
    with pytest.raises(RefUpdateConflict) as exc_info:
        _apply(store, _plan(store, linear3[1]))
    assert exc_info.value.expected == tip
    assert BACKUP not in store.refs
    assert store.tip == tip
    assert store.dirty


def test_stash_restore_failure_is_a_warning(store: FakeHistoryStore, linear3: list[str]) -> None:
    store.dirty = True
    store.fail_stash_restore = True
    outcome = _apply(store, _plan(store, linear3[1]))
    assert store.tip == outcome.new_tip
    assert len(outcome.warnings) == 1
    assert "git stash pop" in str(outcome.warnings[0])


def test_rollback_error_does_not_mask_original(
    store: FakeHistoryStore, linear3: list[str]
) -> None:
    store.conflict_on_update = True
    store.fail_delete_ref = True
    with pytest.raises(RefUpdateConflict):
        _apply(store, _plan(store, linear3[1]))


def test_defer_interrupts_reraises_after_block() -> None:
    reached_end = False
    with pytest.raises(KeyboardInterrupt):
        with defer_interrupts() as received:
            os.kill(os.getpid(), signal.SIGINT)
            reached_end = True
    assert reached_end
    assert received == [signal.SIGINT]


def test_worktree_sync_failure_is_a_warning_and_keeps_stash(
    store: FakeHistoryStore, linear3: list[str]
) -> None:
    old_tip = store.tip
    store.dirty = True
    store.fail_sync = True
    outcome = _apply(store, _plan(store, linear3[1]))

    assert store.tip == outcome.new_tip != old_tip
    assert store.refs[BACKUP] == old_tip
    assert isinstance(outcome.warnings[0], WorktreeSyncFailed)
    assert "read-tree" in str(outcome.warnings[0])
    assert isinstance(outcome.warnings[1], StashRestoreFailed)
    assert len(store.stashes) == 1
    assert "stash_restore" not in store.calls


def test_apply_syncs_worktree_after_branch_moves(store: FakeHistoryStore, linear3: list[str]) -> None:
    old_tip = store.tip
    outcome = _apply(store, _plan(store, linear3[1]))
    assert store.synced == [(old_tip, outcome.new_tip)]
    assert store.calls.index("sync_worktree") > store.calls.index("update_ref refs/heads/main")
