"""Shared fixtures for the retcon test suite.

``FakeHistoryStore`` is an in-memory :class:`~retcon.storage.HistoryStore`
with deterministic, content-derived identities (like git: same content,
same id) and switches for injecting a failure at each protocol step.
"""
from __future__ import annotations

import hashlib
import pathlib
import shutil
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

import pytest
from git import Actor, Repo

from retcon.config import RetconSettings
from retcon.models import OriginalCommit, Signature
from retcon.storage import RefConflictError, RefExistsError, StorageError

BASE_TS = 1_700_000_000


def sig(
    name: str = "Alice Example",
    email: str = "alice@example.com",
    ts: int = BASE_TS,
    offset_minutes: int = 0,
) -> Signature:
    tz = timezone(timedelta(minutes=offset_minutes))
    return Signature(name=name, email=email, when=datetime.fromtimestamp(ts, tz))


def _digest(*parts: object) -> str:
    return hashlib.sha1("\x00".join(repr(p) for p in parts).encode()).hexdigest()


class FakeHistoryStore:
    """Dict-backed history store with failure injection."""

    def __init__(self, branch: str = "main") -> None:
        self.branch = branch
        self.objects: dict[str, OriginalCommit] = {}
        self.refs: dict[str, str] = {}
        self.stashes: list[str] = []
        self.dirty = False
        self.writes = 0
        self.fail_write_at: int | None = None
        self.conflict_on_update = False
        self.fail_stash_save = False
        self.fail_stash_restore = False
        self.fail_delete_ref = False
        self.fail_sync = False
        self.synced: list[tuple[str, str]] = []
        self.calls: list[str] = []

    # -- building histories ---------------------------------------------------

    def commit(
        self,
        message: str,
        parents: Sequence[str] = (),
        *,
        author: Signature | None = None,
        committer: Signature | None = None,
        tree: str | None = None,
        advance: bool = True,
    ) -> str:
        """Add a commit directly (no call recorded) and optionally move the branch."""
        author = author or sig(ts=BASE_TS + len(self.objects) * 60)
        committer = committer or author
        tree = tree or _digest("tree", message)
        commit_id = self._store(tree, parents, author, committer, message)
        if advance:
            self.refs[f"refs/heads/{self.branch}"] = commit_id
        return commit_id

    def linear(self, count: int) -> list[str]:
        """Build C1←C2←…←Cn on the branch; return ids oldest first."""
        ids: list[str] = []
        for n in range(1, count + 1):
            ids.append(self.commit(f"C{n}", ids[-1:]))
        return ids

    def _store(
        self,
        tree: str,
        parents: Sequence[str],
        author: Signature,
        committer: Signature,
        message: str,
    ) -> str:
        commit_id = _digest(tree, tuple(parents), author, committer, message)
        self.objects[commit_id] = OriginalCommit(
            commit_id=commit_id,
            parent_ids=tuple(parents),
            author=author,
            committer=committer,
            message=message,
            tree_id=tree,
        )
        return commit_id

    # -- HistoryStore --------------------------------------------------------

    def current_branch(self) -> str:
        return self.branch

    def load_history(self, limit: int) -> list[OriginalCommit]:
        out: list[OriginalCommit] = []
        cursor = self.refs.get(f"refs/heads/{self.branch}")
        while cursor is not None and len(out) < limit:
            commit = self.objects[cursor]
            out.append(commit)
            cursor = commit.parent_ids[0] if commit.parent_ids else None
        return out

    def read_ref(self, name: str) -> str | None:
        return self.refs.get(name)

    def write_commit(
        self,
        tree_id: str,
        parents: Sequence[str],
        author: Signature,
        committer: Signature,
        message: str,
    ) -> str:
        index = self.writes
        self.writes += 1
        self.calls.append("write_commit")
        if self.fail_write_at is not None and index == self.fail_write_at:
            raise StorageError(f"injected write failure #{index}")
        for parent in parents:
            if parent not in self.objects:
                raise StorageError(f"missing parent {parent[:7]}")
        return self._store(tree_id, parents, author, committer, message)

    def create_ref(self, name: str, target: str) -> None:
        self.calls.append(f"create_ref {name}")
        if name in self.refs:
            raise RefExistsError(name)
        self.refs[name] = target

    def update_ref(self, name: str, old_expected: str, new_target: str) -> None:
        self.calls.append(f"update_ref {name}")
        actual = self.refs.get(name)
        if self.conflict_on_update or actual != old_expected:
            raise RefConflictError(name, old_expected, actual)
        self.refs[name] = new_target

    def delete_ref(self, name: str) -> None:
        self.calls.append(f"delete_ref {name}")
        if self.fail_delete_ref or name not in self.refs:
            raise StorageError(f"cannot delete {name}")
        del self.refs[name]

    def sync_worktree(self, name: str, old_target: str, new_target: str) -> None:
        if name != f"refs/heads/{self.branch}":
            return
        self.calls.append("sync_worktree")
        if self.fail_sync:
            raise StorageError("injected worktree sync failure")
        self.synced.append((old_target, new_target))

    def stash_save(self, message: str) -> str | None:
        self.calls.append("stash_save")
        if self.fail_stash_save:
            raise StorageError("injected stash failure")
        if not self.dirty:
            return None
        handle = _digest("stash", len(self.stashes), message)
        self.stashes.append(handle)
        self.dirty = False
        return handle

    def stash_restore(self, handle: str) -> None:
        self.calls.append("stash_restore")
        if self.fail_stash_restore:
            raise StorageError("injected stash restore failure")
        if handle not in self.stashes:
            raise StorageError(f"stash {handle[:7]} not found")
        self.stashes.remove(handle)
        self.dirty = True

    # -- assertions helpers --------------------------------------------------

    @property
    def tip(self) -> str:
        return self.refs[f"refs/heads/{self.branch}"]

    def parents_of(self, commit_id: str) -> tuple[str, ...]:
        return self.objects[commit_id].parent_ids

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        pending = [descendant]
        seen: set[str] = set()
        while pending:
            current = pending.pop()
            if current == ancestor:
                return True
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self.objects[current].parent_ids)
        return False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeHistoryStore:
    return FakeHistoryStore()


@pytest.fixture
def linear3(store: FakeHistoryStore) -> list[str]:
    """C1←C2←C3 on ``main`` (C1 oldest); returns ``[c1, c2, c3]``."""
    return store.linear(3)


@pytest.fixture
def settings() -> RetconSettings:
    return RetconSettings(
        history_limit=50,
        sync_author_to_committer=True,
        backup_ref_prefix="refs/original/refs/heads/",
        stash_message="retcon: auto-stash before history rewrite",
        debug=False,
    )


# ---------------------------------------------------------------------------
# Real git repositories (GitPython)
# ---------------------------------------------------------------------------


def make_git_repo(root: pathlib.Path, count: int = 3) -> Repo:
    """Initialise ``root`` with C1…Cn on ``main``, one new file per commit."""
    repo = Repo.init(root)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test Runner")
        cw.set_value("user", "email", "runner@example.com")
    actor = Actor("Alice Example", "alice@example.com")
    for n in range(1, count + 1):
        name = f"file{n}.txt"
        (root / name).write_text(f"content {n}\n")
        repo.index.add([name])
        stamp = f"{BASE_TS + n * 60} +0100"
        repo.index.commit(
            f"C{n}\n\nBody of commit {n}.\n",
            author=actor,
            committer=actor,
            author_date=stamp,
            commit_date=stamp,
        )
    return repo


@pytest.fixture
def git_repo(tmp_path: pathlib.Path) -> Repo:
    if shutil.which("git") is None:
        pytest.skip("git executable not found")
    return make_git_repo(tmp_path / "repo")
