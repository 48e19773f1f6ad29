"""Edit Session — the operator-facing façade over the rewrite engine.

An :class:`EditSession` owns one loaded :class:`~retcon.models.GraphSnapshot`
together with its :class:`PendingChangeStore` and :class:`UndoRedoStack`.
Every mutation goes through the session so that it is validated first and
recorded as exactly one undoable action:

- :meth:`EditSession.apply_edit`    — set a field on one or many commits
- :meth:`EditSession.toggle_delete` — mark / unmark commits for deletion
- :meth:`EditSession.move_commit`   — adjacent swap in the display order

:meth:`EditSession.write_changes` plans the rewrite (no I/O), runs the
transactional apply and, on success only, resets the pending state and
reloads history from the new tip.  On failure the pending state and undo
history are left exactly as they were, so the operator can retry.

Commit arguments accept a full identity or an unambiguous prefix of at
least four hex characters.

Boundary rules:
  - No Typer imports.
  - Storage is reached only through :class:`~retcon.storage.HistoryStore`.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from retcon.config import RetconSettings, get_settings
from retcon.errors import (
    FilterActive,
    MergeCommitUnreorderable,
    NoCommits,
    RetconError,
    ValidationError,
)
from retcon.models import EditableField, GraphSnapshot
from retcon.services.pending_changes import EffectiveCommit, PendingChangeStore
from retcon.services.rewrite_planner import RewritePlan, plan_rewrite, summarize_plan
from retcon.services.transactional_apply import apply_plan
from retcon.services.undo_stack import (
    Action,
    CompositeAction,
    DeletionToggled,
    FieldEditApplied,
    OrderSwapped,
    StackStatus,
    UndoRedoStack,
)
from retcon.storage import HistoryStore
from retcon.validation import FieldValue, parse_field_value, same_value

logger = logging.getLogger(__name__)


class MoveDirection(str, enum.Enum):
    """Direction in the newest-first list: ``up`` is towards the tip."""

    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class NewTipSummary:
    """Result of :meth:`EditSession.write_changes`.

    Attributes:
        branch:       Branch that was (or would have been) rewritten.
        old_tip:      Tip before the call.
        new_tip:      Tip after the call; equals ``old_tip`` for a no-op.
        identity_map: ``original -> new`` for every rewritten commit.
        rewritten:    Number of commit objects written.
        deleted:      Number of commits dropped from the branch.
        backup_ref:   Backup ref holding ``old_tip``; ``None`` for a no-op.
        warnings:     Non-fatal problems, e.g. the stash could not be restored.
    """

    branch: str
    old_tip: str | None
    new_tip: str | None
    identity_map: dict[str, str] = field(default_factory=dict)
    rewritten: int = 0
    deleted: int = 0
    backup_ref: str | None = None
    warnings: tuple[RetconError, ...] = ()

    @property
    def noop(self) -> bool:
        return self.backup_ref is None


class EditSession:
    """Pending edits over one branch's loaded history."""

    def __init__(
        self,
        store: HistoryStore,
        settings: RetconSettings | None = None,
        *,
        history_limit: int | None = None,
    ) -> None:
        self._store = store
        self._settings = settings if settings is not None else get_settings()
        self._limit = history_limit if history_limit is not None else self._settings.history_limit
        self.sync_author_to_committer = self._settings.sync_author_to_committer
        self._filter: str | None = None
        self._snapshot = self._load()
        self._changes = PendingChangeStore(self._snapshot)
        self._undo = UndoRedoStack(self._changes)

    # -- state ---------------------------------------------------------------

    @property
    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    @property
    def changes(self) -> PendingChangeStore:
        return self._changes

    @property
    def history(self) -> UndoRedoStack:
        return self._undo

    @property
    def branch(self) -> str:
        return self._snapshot.branch

    @property
    def is_dirty(self) -> bool:
        return self._changes.is_dirty

    @property
    def filter_query(self) -> str | None:
        return self._filter

    @property
    def filter_active(self) -> bool:
        return self._filter is not None

    def resolve(self, commit: str) -> str:
        """Full identity for *commit* (full id or unambiguous prefix)."""
        return self._snapshot.resolve_prefix(commit).commit_id

    def position_of(self, commit: str) -> int:
        """Index of *commit* in the current newest-first display order."""
        return self._changes.display_order.index(self.resolve(commit))

    def effective(self, commit: str) -> EffectiveCommit:
        return self._changes.get_effective(
            self.resolve(commit),
            sync_author_to_committer=self.sync_author_to_committer,
        )

    # -- filtering -----------------------------------------------------------

    def set_filter(self, query: str) -> bool:
        """Narrow :meth:`visible_commits` to *query*; return whether a filter is now set.

        A blank query, or one that matches no commit, leaves the filter
        cleared so the full list (and reordering) stays available.
        """
        text = query.strip().lower()
        self._filter = text or None
        if self._filter is not None and not self.visible_commits():
            logger.debug("filter %r matches nothing; cleared", text)
            self._filter = None
        return self._filter is not None

    def clear_filter(self) -> None:
        self._filter = None

    def visible_commits(self) -> list[EffectiveCommit]:
        """Effective commits in display order, narrowed by the active filter."""
        rows = [
            self._changes.get_effective(cid, sync_author_to_committer=self.sync_author_to_committer)
            for cid in self._changes.display_order
        ]
        if self._filter is None:
            return rows
        return [row for row in rows if self._matches(row, self._filter)]

    @staticmethod
    def _matches(row: EffectiveCommit, needle: str) -> bool:
        haystacks = (
            row.author.name,
            row.author.email,
            row.message,
            row.original.short_id,
        )
        return any(needle in h.lower() for h in haystacks)

    # -- edits ---------------------------------------------------------------

    def apply_edit(
        self,
        commits: str | Sequence[str],
        edit_field: EditableField | str,
        value: str | None,
    ) -> int:
        """Set (or with ``None`` clear) *edit_field* on one or more commits.

        *value* is parsed and validated once, before anything is stored; a
        list of commits is recorded as a single undo step.  Returns the
        number of commits whose override actually changed.
        """
        if isinstance(edit_field, str) and not isinstance(edit_field, EditableField):
            try:
                edit_field = EditableField.parse(edit_field)
            except ValueError as exc:
                raise ValidationError("field", str(exc)) from None
        typed: FieldValue | None = None if value is None else parse_field_value(edit_field, value)
        ids = self._resolve_many(commits)

        actions: list[Action] = []
        for cid in ids:
            old = self._changes.set_field(cid, edit_field, typed)
            if not same_value(old, typed):
                actions.append(FieldEditApplied(cid, edit_field, old=old, new=typed))
        self._record(actions, f"Edit {edit_field.display_name.lower()} on {len(ids)} commit(s)")
        return len(actions)

    def toggle_delete(self, commits: str | Sequence[str]) -> bool:
        """Flip deletion for *commits*; return whether they are now deleted.

        For a batch, the first commit's current state decides: if it is not
        deleted the whole batch is deleted, otherwise the whole batch is
        restored.
        """
        ids = self._resolve_many(commits)
        target = not self._changes.is_deleted(ids[0])
        actions: list[Action] = []
        for cid in ids:
            old = self._changes.set_deleted(cid, target)
            if old != target:
                actions.append(DeletionToggled(cid, old=old, new=target))
        verb = "Delete" if target else "Restore"
        self._record(actions, f"{verb} {len(ids)} commit(s)")
        return target

    def move_commit(self, position: int, direction: MoveDirection | str) -> int:
        """Swap the commit at *position* with its neighbour; return its new position.

        Raises:
            FilterActive:             a filter is set (positions are ambiguous).
            MergeCommitUnreorderable: either slot holds a merge commit.
            ValidationError:          already at the top / bottom, or bad input.
        """
        if self._filter is not None:
            raise FilterActive()
        try:
            step = MoveDirection(direction)
        except ValueError:
            raise ValidationError("direction", f"{direction!r} is not 'up' or 'down'") from None

        order = self._changes.display_order
        if not 0 <= position < len(order):
            raise ValidationError("position", f"{position} is outside 0..{len(order) - 1}")
        target = position - 1 if step is MoveDirection.UP else position + 1
        if target < 0:
            raise ValidationError("position", "commit is already at the top")
        if target >= len(order):
            raise ValidationError("position", "commit is already at the bottom")

        for cid in (order[position], order[target]):
            if self._snapshot.get(cid).is_merge:
                raise MergeCommitUnreorderable(cid)

        action = OrderSwapped(position, target)
        action.apply(self._changes)
        self._undo.record(action)
        return target

    # -- undo / redo ---------------------------------------------------------

    def undo(self) -> StackStatus:
        return self._undo.undo()

    def redo(self) -> StackStatus:
        return self._undo.redo()

    @property
    def can_undo(self) -> bool:
        return self._undo.can_undo

    @property
    def can_redo(self) -> bool:
        return self._undo.can_redo

    # -- planning & apply ----------------------------------------------------

    def preview_plan(self) -> RewritePlan:
        return plan_rewrite(
            self._snapshot,
            self._changes,
            sync_author_to_committer=self.sync_author_to_committer,
        )

    def change_summary(self) -> list[str]:
        return summarize_plan(self.preview_plan(), self._changes)

    def write_changes(self) -> NewTipSummary:
        """Plan and publish every pending change.

        Planning errors are raised before any storage I/O.  Apply errors
        leave the pending changes and undo history untouched.
        """
        plan = self.preview_plan()
        if plan.is_empty:
            return NewTipSummary(branch=plan.branch, old_tip=plan.base_tip, new_tip=plan.base_tip)

        outcome = apply_plan(
            self._store,
            plan,
            backup_ref=self._settings.backup_ref_for(plan.branch),
            stash_message=self._settings.stash_message,
        )
        summary = NewTipSummary(
            branch=outcome.branch,
            old_tip=outcome.old_tip,
            new_tip=outcome.new_tip,
            identity_map=outcome.identity_map,
            rewritten=len(plan.specs),
            deleted=len(plan.deleted),
            backup_ref=outcome.backup_ref,
            warnings=outcome.warnings,
        )
        self._reset(self._load())
        logger.info(
            "✅ Rewrote %s: %d commit(s), %d deleted",
            summary.branch,
            summary.rewritten,
            summary.deleted,
        )
        return summary

    def discard_all_pending(self) -> None:
        self._changes.clear()
        self._undo.clear()

    def reload(self) -> None:
        """Re-read history from storage, discarding all pending changes."""
        self._reset(self._load())

    # -- internals -----------------------------------------------------------

    def _load(self) -> GraphSnapshot:
        branch = self._store.current_branch()
        commits = self._store.load_history(self._limit)
        if not commits:
            raise NoCommits()
        logger.debug("loaded %d commit(s) on %s", len(commits), branch)
        return GraphSnapshot.from_commits(branch, commits)

    def _reset(self, snapshot: GraphSnapshot) -> None:
        self._snapshot = snapshot
        self._changes = PendingChangeStore(snapshot)
        self._undo = UndoRedoStack(self._changes)

    def _resolve_many(self, commits: str | Sequence[str]) -> list[str]:
        raw = [commits] if isinstance(commits, str) else list(commits)
        if not raw:
            raise ValidationError("commits", "no commits selected")
        ids: list[str] = []
        for item in raw:
            cid = self.resolve(item)
            if cid not in ids:
                ids.append(cid)
        return ids

    def _record(self, actions: list[Action], label: str) -> None:
        if not actions:
            return
        if len(actions) == 1:
            self._undo.record(actions[0])
        else:
            self._undo.record(CompositeAction(actions=tuple(actions), label=label))
