"""Pending Change Store — the sparse overlay of uncommitted edits.

The store records, per original commit identity, a :class:`FieldEdit` of
optional overrides and a ``deleted`` flag, plus the operator's current
:attr:`PendingChangeStore.display_order`.  It never copies or mutates the
:class:`~retcon.models.GraphSnapshot`; :meth:`get_effective` resolves an
original commit against its overrides on demand, and is the only read path
the planner uses.

Mutation goes through three primitives — :meth:`set_field`,
:meth:`set_deleted` / :meth:`toggle_deleted` and :meth:`swap` — each of
which returns what is needed to invert it.  The undo stack records those
inverses; no other code edits the overlay.

Boundary rules:
  - No storage, git, or Typer imports.  In-memory only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime

from retcon.errors import UnknownCommit, ValidationError
from retcon.models import EditableField, GraphSnapshot, OriginalCommit, Signature
from retcon.validation import FieldValue, check_field_value

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldEdit:
    """Optional override for each editable field; ``None`` means "keep original"."""

    message: str | None = None
    author_name: str | None = None
    author_email: str | None = None
    author_date: datetime | None = None
    committer_name: str | None = None
    committer_email: str | None = None
    committer_date: datetime | None = None

    def get(self, edit_field: EditableField) -> FieldValue | None:
        value: FieldValue | None = getattr(self, edit_field.value)
        return value

    def with_value(self, edit_field: EditableField, value: FieldValue | None) -> FieldEdit:
        return replace(self, **{edit_field.value: value})

    def touched(self) -> tuple[EditableField, ...]:
        """Fields carrying an override, in :class:`EditableField` order."""
        return tuple(f for f in EditableField if self.get(f) is not None)

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass(frozen=True)
class PendingChange:
    """Everything pending for one original commit."""

    edit: FieldEdit = field(default_factory=FieldEdit)
    deleted: bool = False

    @property
    def is_empty(self) -> bool:
        return self.edit.is_empty and not self.deleted


@dataclass(frozen=True)
class EffectiveCommit:
    """An original commit with all pending overrides resolved.

    Attributes:
        original:  The untouched :class:`OriginalCommit`.
        author:    Resolved author signature.
        committer: Resolved committer signature (after author→committer sync).
        message:   Resolved message.
        deleted:   Whether the commit is marked for deletion.
    """

    original: OriginalCommit
    author: Signature
    committer: Signature
    message: str
    deleted: bool

    @property
    def commit_id(self) -> str:
        return self.original.commit_id

    @property
    def summary(self) -> str:
        lines = self.message.splitlines()
        return lines[0] if lines else ""


# ---------------------------------------------------------------------------
# Pure resolution
# ---------------------------------------------------------------------------


def resolve_effective(
    original: OriginalCommit,
    change: PendingChange | None,
    *,
    sync_author_to_committer: bool = False,
) -> EffectiveCommit:
    """Overlay *change* on *original* without touching either.

    Sync is evaluated per field: a committer field with its own override
    keeps it; otherwise, when sync is enabled and the matching author field
    is overridden, the author override is copied across.
    """
    edit = change.edit if change is not None else FieldEdit()

    def _pick(edit_field: EditableField, original_value: FieldValue) -> FieldValue:
        own = edit.get(edit_field)
        if own is not None:
            return own
        if sync_author_to_committer and not edit_field.is_author:
            source = _COMMITTER_TO_AUTHOR.get(edit_field)
            if source is not None:
                synced = edit.get(source)
                if synced is not None:
                    return synced
        return original_value

    author = Signature(
        name=str(_pick(EditableField.AUTHOR_NAME, original.author.name)),
        email=str(_pick(EditableField.AUTHOR_EMAIL, original.author.email)),
        when=_as_datetime(_pick(EditableField.AUTHOR_DATE, original.author.when)),
    )
    committer = Signature(
        name=str(_pick(EditableField.COMMITTER_NAME, original.committer.name)),
        email=str(_pick(EditableField.COMMITTER_EMAIL, original.committer.email)),
        when=_as_datetime(_pick(EditableField.COMMITTER_DATE, original.committer.when)),
    )
    return EffectiveCommit(
        original=original,
        author=author,
        committer=committer,
        message=str(_pick(EditableField.MESSAGE, original.message)),
        deleted=change.deleted if change is not None else False,
    )


_COMMITTER_TO_AUTHOR: dict[EditableField, EditableField] = {
    EditableField.COMMITTER_NAME: EditableField.AUTHOR_NAME,
    EditableField.COMMITTER_EMAIL: EditableField.AUTHOR_EMAIL,
    EditableField.COMMITTER_DATE: EditableField.AUTHOR_DATE,
}


def _as_datetime(value: FieldValue) -> datetime:
    if not isinstance(value, datetime):
        raise TypeError(f"expected datetime, got {type(value).__name__}")
    return value


# ---------------------------------------------------------------------------
# PendingChangeStore
# ---------------------------------------------------------------------------


class PendingChangeStore:
    """Sparse overlay of edits, deletions and display order over a snapshot."""

    def __init__(self, snapshot: GraphSnapshot) -> None:
        self._snapshot = snapshot
        self._changes: dict[str, PendingChange] = {}
        self._order: list[str] = list(snapshot.order)

    @property
    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    @property
    def display_order(self) -> tuple[str, ...]:
        """Current desired order, newest first (same orientation as the snapshot)."""
        return tuple(self._order)

    # -- reads ---------------------------------------------------------------

    def lookup(self, commit_id: str) -> PendingChange | None:
        self._require(commit_id)
        return self._changes.get(commit_id)

    def edits_for(self, commit_id: str) -> FieldEdit:
        change = self.lookup(commit_id)
        return change.edit if change is not None else FieldEdit()

    def is_deleted(self, commit_id: str) -> bool:
        change = self.lookup(commit_id)
        return change.deleted if change is not None else False

    def get_effective(
        self,
        commit_id: str,
        *,
        sync_author_to_committer: bool = False,
    ) -> EffectiveCommit:
        original = self._snapshot.get(commit_id)
        return resolve_effective(
            original,
            self._changes.get(commit_id),
            sync_author_to_committer=sync_author_to_committer,
        )

    def is_touched(self, commit_id: str) -> bool:
        """Deleted or carrying at least one override."""
        change = self.lookup(commit_id)
        return change is not None and not change.is_empty

    @property
    def modified_count(self) -> int:
        return sum(1 for c in self._changes.values() if not c.edit.is_empty)

    @property
    def deleted_count(self) -> int:
        return sum(1 for c in self._changes.values() if c.deleted)

    def deleted_ids(self) -> tuple[str, ...]:
        """Deleted identities in snapshot order."""
        return tuple(cid for cid in self._snapshot.order if self.is_deleted(cid))

    @property
    def order_changed(self) -> bool:
        return tuple(self._order) != self._snapshot.order

    @property
    def is_dirty(self) -> bool:
        return self.modified_count > 0 or self.deleted_count > 0 or self.order_changed

    # -- mutations -----------------------------------------------------------

    def set_field(
        self,
        commit_id: str,
        edit_field: EditableField,
        value: FieldValue | None,
    ) -> FieldValue | None:
        """Store (or with ``None`` clear) an override; return the previous override."""
        self._require(commit_id)
        if value is not None:
            value = check_field_value(edit_field, value)
        current = self._changes.get(commit_id, PendingChange())
        previous = current.edit.get(edit_field)
        self._put(commit_id, replace(current, edit=current.edit.with_value(edit_field, value)))
        logger.debug(
            "set %s on %s (%s → %s)",
            edit_field.value,
            commit_id[:7],
            "unset" if previous is None else "set",
            "unset" if value is None else "set",
        )
        return previous

    def set_deleted(self, commit_id: str, deleted: bool) -> bool:
        """Force the deleted flag; return the previous value."""
        self._require(commit_id)
        current = self._changes.get(commit_id, PendingChange())
        previous = current.deleted
        self._put(commit_id, replace(current, deleted=deleted))
        return previous

    def toggle_deleted(self, commit_id: str) -> bool:
        """Flip the deleted flag; return the previous value."""
        previous = self.is_deleted(commit_id)
        self.set_deleted(commit_id, not previous)
        return previous

    def swap(self, pos_a: int, pos_b: int) -> None:
        """Swap two display-order slots (positions index :attr:`display_order`)."""
        size = len(self._order)
        for pos in (pos_a, pos_b):
            if not 0 <= pos < size:
                raise ValidationError("position", f"{pos} is outside 0..{size - 1}")
        self._order[pos_a], self._order[pos_b] = self._order[pos_b], self._order[pos_a]

    def clear(self) -> None:
        """Drop every pending change and restore the snapshot order."""
        self._changes.clear()
        self._order = list(self._snapshot.order)

    # -- internals -----------------------------------------------------------

    def _require(self, commit_id: str) -> None:
        if commit_id not in self._snapshot:
            raise UnknownCommit(commit_id)

    def _put(self, commit_id: str, change: PendingChange) -> None:
        # Keep the overlay sparse: an entry exists only while it carries something.
        if change.is_empty:
            self._changes.pop(commit_id, None)
        else:
            self._changes[commit_id] = change
