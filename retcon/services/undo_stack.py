"""Undo/Redo Stack — reversible actions over the pending-change store.

Every mutation of the :class:`~retcon.services.pending_changes.PendingChangeStore`
is expressed as an :class:`Action` that can apply itself and produce its
exact inverse:

- :class:`FieldEditApplied` — an override was set, replaced or cleared.
- :class:`DeletionToggled`  — a commit's deleted flag changed.
- :class:`OrderSwapped`     — two adjacent display-order slots were swapped.
- :class:`CompositeAction`  — several of the above recorded as one step
  (batch edits across a selection undo in a single call).

Linear history semantics: recording a new action discards anything that was
undone.  A successful apply clears both stacks because the recorded
identities no longer exist on the branch.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from retcon.models import EditableField
from retcon.services.pending_changes import PendingChangeStore
from retcon.validation import FieldValue

logger = logging.getLogger(__name__)


class StackStatus(str, enum.Enum):
    """Outcome of :meth:`UndoRedoStack.undo` / :meth:`UndoRedoStack.redo`."""

    APPLIED = "applied"
    NOTHING_TO_UNDO = "nothing_to_undo"
    NOTHING_TO_REDO = "nothing_to_redo"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldEditApplied:
    """``field`` of ``commit_id`` went from ``old`` to ``new`` (``None`` = unset)."""

    commit_id: str
    field: EditableField
    old: FieldValue | None
    new: FieldValue | None

    def apply(self, store: PendingChangeStore) -> None:
        store.set_field(self.commit_id, self.field, self.new)

    def inverse(self) -> FieldEditApplied:
        return FieldEditApplied(self.commit_id, self.field, old=self.new, new=self.old)

    @property
    def description(self) -> str:
        return f"Edit {self.field.display_name.lower()} of {self.commit_id[:7]}"


@dataclass(frozen=True)
class DeletionToggled:
    commit_id: str
    old: bool
    new: bool

    def apply(self, store: PendingChangeStore) -> None:
        store.set_deleted(self.commit_id, self.new)

    def inverse(self) -> DeletionToggled:
        return DeletionToggled(self.commit_id, old=self.new, new=self.old)

    @property
    def description(self) -> str:
        verb = "Delete" if self.new else "Restore"
        return f"{verb} {self.commit_id[:7]}"


@dataclass(frozen=True)
class OrderSwapped:
    pos_a: int
    pos_b: int

    def apply(self, store: PendingChangeStore) -> None:
        store.swap(self.pos_a, self.pos_b)

    def inverse(self) -> OrderSwapped:
        # A swap is its own inverse.
        return self

    @property
    def description(self) -> str:
        return "Reorder commits"


@dataclass(frozen=True)
class CompositeAction:
    """A batch recorded as one undo step; inverted in reverse order."""

    actions: tuple[Action, ...]
    label: str = ""

    def apply(self, store: PendingChangeStore) -> None:
        for action in self.actions:
            action.apply(store)

    def inverse(self) -> CompositeAction:
        return CompositeAction(
            actions=tuple(a.inverse() for a in reversed(self.actions)),
            label=self.label,
        )

    @property
    def description(self) -> str:
        return self.label or f"{len(self.actions)} change(s)"


Action = FieldEditApplied | DeletionToggled | OrderSwapped | CompositeAction


# ---------------------------------------------------------------------------
# Stack
# ---------------------------------------------------------------------------


class UndoRedoStack:
    """Linear undo/redo over a single :class:`PendingChangeStore`."""

    def __init__(self, store: PendingChangeStore) -> None:
        self._store = store
        self._undo: list[Action] = []
        self._redo: list[Action] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    def peek_undo(self) -> Action | None:
        return self._undo[-1] if self._undo else None

    def record(self, action: Action) -> None:
        """Push an already-applied *action*; invalidates the redo branch."""
        self._undo.append(action)
        self._redo.clear()

    def undo(self) -> StackStatus:
        if not self._undo:
            logger.debug("undo: nothing to undo")
            return StackStatus.NOTHING_TO_UNDO
        action = self._undo.pop()
        action.inverse().apply(self._store)
        self._redo.append(action)
        logger.debug("undo: %s", action.description)
        return StackStatus.APPLIED

    def redo(self) -> StackStatus:
        if not self._redo:
            logger.debug("redo: nothing to redo")
            return StackStatus.NOTHING_TO_REDO
        action = self._redo.pop()
        action.apply(self._store)
        self._undo.append(action)
        logger.debug("redo: %s", action.description)
        return StackStatus.APPLIED

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
