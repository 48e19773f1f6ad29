"""The narrow storage interface the rewrite engine consumes.

The engine never talks to git directly.  Everything it needs — loading
history, writing commit objects, moving refs, stashing the working tree —
goes through :class:`HistoryStore`.  ``retcon.git_store.GitHistoryStore``
is the production implementation; tests use an in-memory fake.

All operations are synchronous and either succeed or raise a
:class:`StorageError` subclass.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from retcon.models import OriginalCommit, Signature


class StorageError(Exception):
    """Base class for failures reported by a :class:`HistoryStore`."""


class RefExistsError(StorageError):
    """``create_ref`` was asked to create a ref that is already present."""

    def __init__(self, name: str) -> None:
        super().__init__(f"ref {name!r} already exists")
        self.name = name


class RefConflictError(StorageError):
    """``update_ref`` found a value other than the expected old target."""

    def __init__(self, name: str, expected: str | None, actual: str | None) -> None:
        super().__init__(
            f"ref {name!r} is at {actual[:7] if actual else 'nothing'}, "
            f"expected {expected[:7] if expected else 'nothing'}"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


@runtime_checkable
class HistoryStore(Protocol):
    """Storage primitives used by the engine."""

    def current_branch(self) -> str:
        """Short name of the checked-out branch (e.g. ``main``)."""
        ...

    def load_history(self, limit: int) -> list[OriginalCommit]:
        """Return up to *limit* commits along the first-parent chain, newest first."""
        ...

    def read_ref(self, name: str) -> str | None:
        """Return the identity *name* points at, or ``None`` when absent."""
        ...

    def write_commit(
        self,
        tree_id: str,
        parents: Sequence[str],
        author: Signature,
        committer: Signature,
        message: str,
    ) -> str:
        """Write a commit object (no ref is touched) and return its identity."""
        ...

    def create_ref(self, name: str, target: str) -> None:
        """Create *name* at *target*; raise :class:`RefExistsError` if present."""
        ...

    def update_ref(self, name: str, old_expected: str, new_target: str) -> None:
        """Compare-and-swap *name*; raise :class:`RefConflictError` on mismatch."""
        ...

    def delete_ref(self, name: str) -> None:
        ...

    def sync_worktree(self, name: str, old_target: str, new_target: str) -> None:
        """Update checked-out files after *name* moved; no-op unless it is checked out."""
        ...

    def stash_save(self, message: str) -> str | None:
        """Stash uncommitted work; return a handle, or ``None`` when clean."""
        ...

    def stash_restore(self, handle: str) -> None:
        """Re-apply and drop the stash identified by *handle*."""
        ...
