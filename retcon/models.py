"""Immutable history types shared by every retcon component.

- :class:`Signature`     — name, email and timestamp of an author or committer.
- :class:`OriginalCommit` — one commit exactly as loaded from storage.
- :class:`GraphSnapshot` — the loaded, newest-first sequence of commits.
- :class:`EditableField` — the seven metadata fields an operator may change.

Nothing in this module is ever mutated after construction.  Pending edits
live in a sparse overlay (``retcon.services.pending_changes``) and are
resolved against these originals on demand.
"""
from __future__ import annotations

import enum
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from retcon.errors import UnknownCommit


@dataclass(frozen=True)
class Signature:
    """An author or committer identity with its timestamp.

    ``when`` is always timezone-aware; the offset is part of the commit
    object and must survive a rewrite unchanged.
    """

    name: str
    email: str
    when: datetime


@dataclass(frozen=True)
class OriginalCommit:
    """A commit as it existed when the session was loaded.

    Attributes:
        commit_id:  40-hex content address.
        parent_ids: Ordered parent identities (first parent first).
        author:     Original author signature.
        committer:  Original committer signature.
        message:    Full message, byte-for-byte as stored.
        tree_id:    Content tree reference; never altered by a rewrite.
        position:   Index in the loaded newest-first sequence (0 = tip).
    """

    commit_id: str
    parent_ids: tuple[str, ...]
    author: Signature
    committer: Signature
    message: str
    tree_id: str
    position: int = 0

    @property
    def short_id(self) -> str:
        return self.commit_id[:7]

    @property
    def summary(self) -> str:
        """First line of the message, used for table display."""
        lines = self.message.splitlines()
        return lines[0] if lines else ""

    @property
    def is_merge(self) -> bool:
        return len(self.parent_ids) > 1

    @property
    def is_root(self) -> bool:
        return not self.parent_ids


@dataclass(frozen=True)
class GraphSnapshot:
    """Read-only view of the loaded history, newest commit first.

    The snapshot is built once per session from ``HistoryStore.load_history``
    and replaced wholesale (never edited) after a successful rewrite.
    """

    branch: str
    commits: tuple[OriginalCommit, ...]
    _by_id: dict[str, OriginalCommit] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        indexed = tuple(
            c if c.position == i else _with_position(c, i)
            for i, c in enumerate(self.commits)
        )
        object.__setattr__(self, "commits", indexed)
        object.__setattr__(self, "_by_id", {c.commit_id: c for c in indexed})

    @classmethod
    def from_commits(cls, branch: str, commits: Sequence[OriginalCommit]) -> GraphSnapshot:
        return cls(branch=branch, commits=tuple(commits))

    def __len__(self) -> int:
        return len(self.commits)

    def __iter__(self) -> Iterator[OriginalCommit]:
        return iter(self.commits)

    def __contains__(self, commit_id: object) -> bool:
        return commit_id in self._by_id

    @property
    def tip(self) -> OriginalCommit | None:
        return self.commits[0] if self.commits else None

    @property
    def order(self) -> tuple[str, ...]:
        """Identities in loaded (newest-first) order."""
        return tuple(c.commit_id for c in self.commits)

    def get(self, commit_id: str) -> OriginalCommit:
        """Return the commit for *commit_id* or raise :class:`UnknownCommit`."""
        try:
            return self._by_id[commit_id]
        except KeyError:
            raise UnknownCommit(commit_id) from None

    def oldest_first(self) -> tuple[OriginalCommit, ...]:
        return tuple(reversed(self.commits))

    def resolve_prefix(self, prefix: str) -> OriginalCommit:
        """Resolve an abbreviated identity (≥ 4 hex chars) to a loaded commit.

        Raises :class:`UnknownCommit` on no match or an ambiguous prefix.
        """
        prefix = prefix.strip().lower()
        if prefix in self._by_id:
            return self._by_id[prefix]
        if len(prefix) < 4:
            raise UnknownCommit(prefix)
        matches = [c for c in self.commits if c.commit_id.startswith(prefix)]
        if len(matches) != 1:
            raise UnknownCommit(prefix)
        return matches[0]


def _with_position(commit: OriginalCommit, position: int) -> OriginalCommit:
    return OriginalCommit(
        commit_id=commit.commit_id,
        parent_ids=commit.parent_ids,
        author=commit.author,
        committer=commit.committer,
        message=commit.message,
        tree_id=commit.tree_id,
        position=position,
    )


class EditableField(str, enum.Enum):
    """Fields that can be edited on a commit."""

    AUTHOR_NAME = "author_name"
    AUTHOR_EMAIL = "author_email"
    AUTHOR_DATE = "author_date"
    COMMITTER_NAME = "committer_name"
    COMMITTER_EMAIL = "committer_email"
    COMMITTER_DATE = "committer_date"
    MESSAGE = "message"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def short_label(self) -> str:
        return _SHORT_LABELS[self]

    @property
    def is_date(self) -> bool:
        return self in (EditableField.AUTHOR_DATE, EditableField.COMMITTER_DATE)

    @property
    def is_email(self) -> bool:
        return self in (EditableField.AUTHOR_EMAIL, EditableField.COMMITTER_EMAIL)

    @property
    def is_multiline(self) -> bool:
        return self is EditableField.MESSAGE

    @property
    def is_author(self) -> bool:
        return self in _AUTHOR_TO_COMMITTER

    @property
    def committer_counterpart(self) -> EditableField | None:
        """The committer field an author edit syncs into, if any."""
        return _AUTHOR_TO_COMMITTER.get(self)

    @classmethod
    def parse(cls, raw: str) -> EditableField:
        """Accept ``author_name``, ``author-name`` or ``Author Name``."""
        key = raw.strip().lower().replace("-", "_").replace(" ", "_")
        aliases = {"author": "author_name", "committer": "committer_name", "msg": "message"}
        key = aliases.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown field {raw!r}") from None


_DISPLAY_NAMES: dict[EditableField, str] = {
    EditableField.AUTHOR_NAME: "Author Name",
    EditableField.AUTHOR_EMAIL: "Author Email",
    EditableField.AUTHOR_DATE: "Author Date",
    EditableField.COMMITTER_NAME: "Committer Name",
    EditableField.COMMITTER_EMAIL: "Committer Email",
    EditableField.COMMITTER_DATE: "Committer Date",
    EditableField.MESSAGE: "Commit Message",
}

_SHORT_LABELS: dict[EditableField, str] = {
    EditableField.AUTHOR_NAME: "Author",
    EditableField.AUTHOR_EMAIL: "Email",
    EditableField.AUTHOR_DATE: "Date",
    EditableField.COMMITTER_NAME: "Committer",
    EditableField.COMMITTER_EMAIL: "C.Email",
    EditableField.COMMITTER_DATE: "C.Date",
    EditableField.MESSAGE: "Message",
}

_AUTHOR_TO_COMMITTER: dict[EditableField, EditableField] = {
    EditableField.AUTHOR_NAME: EditableField.COMMITTER_NAME,
    EditableField.AUTHOR_EMAIL: EditableField.COMMITTER_EMAIL,
    EditableField.AUTHOR_DATE: EditableField.COMMITTER_DATE,
}
