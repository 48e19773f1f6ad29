"""GitPython implementation of :class:`~retcon.storage.HistoryStore`.

Reads go through GitPython's object model; ref moves go through
``git update-ref`` with an old-value guard so every branch move is a
compare-and-swap.  Commits are written with ``Commit.create_from_tree``
(never ``git commit``), which stores the message verbatim and keeps each
signature's own timezone offset.

:meth:`GitHistoryStore.open` refuses repositories that cannot be rewritten
safely: a rebase or merge in progress, a detached HEAD, or no commits.
"""
from __future__ import annotations

import logging
import pathlib
from collections.abc import Sequence
from datetime import datetime, timedelta

from git import Actor, Commit, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from retcon.errors import (
    DetachedHead,
    MergeInProgress,
    NoCommits,
    NotARepository,
    RebaseInProgress,
)
from retcon.models import OriginalCommit, Signature
from retcon.storage import RefConflictError, RefExistsError, StorageError

logger = logging.getLogger(__name__)

_ZERO_OID = "0" * 40


class GitHistoryStore:
    """History store backed by a non-bare git repository with a worktree."""

    def __init__(self, repo: Repo) -> None:
        self._repo = repo

    @classmethod
    def open(cls, path: pathlib.Path | str | None = None) -> GitHistoryStore:
        """Discover the repository containing *path* and check it is rewritable."""
        target = pathlib.Path(path or ".").resolve()
        try:
            repo = Repo(target, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise NotARepository(str(target)) from None
        if repo.bare:
            raise NotARepository(f"{target} (bare repository)")

        git_dir = pathlib.Path(repo.git_dir)
        if (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists():
            raise RebaseInProgress()
        if (git_dir / "MERGE_HEAD").exists():
            raise MergeInProgress()
        if repo.head.is_detached:
            raise DetachedHead()
        if not repo.head.is_valid():
            raise NoCommits()
        logger.debug("opened repository at %s", repo.working_dir)
        return cls(repo)

    @property
    def repo(self) -> Repo:
        return self._repo

    @property
    def root(self) -> pathlib.Path:
        return pathlib.Path(self._repo.working_dir)

    # -- reads ---------------------------------------------------------------

    def current_branch(self) -> str:
        try:
            return self._repo.active_branch.name
        except TypeError:
            raise DetachedHead() from None

    def load_history(self, limit: int) -> list[OriginalCommit]:
        ref = f"refs/heads/{self.current_branch()}"
        try:
            commits = list(self._repo.iter_commits(ref, first_parent=True, max_count=limit))
        except (GitCommandError, ValueError) as exc:
            raise StorageError(f"cannot read history of {ref}: {exc}") from exc
        return [_to_original(c, i) for i, c in enumerate(commits)]

    def read_ref(self, name: str) -> str | None:
        try:
            out: str = self._repo.git.rev_parse("--verify", "--quiet", name)
        except GitCommandError:
            return None
        return out.strip() or None

    # -- writes --------------------------------------------------------------

    def write_commit(
        self,
        tree_id: str,
        parents: Sequence[str],
        author: Signature,
        committer: Signature,
        message: str,
    ) -> str:
        try:
            commit = Commit.create_from_tree(
                self._repo,
                self._repo.tree(tree_id),
                message,
                parent_commits=[self._repo.commit(p) for p in parents],
                head=False,
                author=Actor(author.name, author.email),
                committer=Actor(committer.name, committer.email),
                author_date=_git_time(author.when),
                commit_date=_git_time(committer.when),
            )
        except (GitCommandError, ValueError) as exc:
            raise StorageError(f"cannot write commit for tree {tree_id[:7]}: {exc}") from exc
        return commit.hexsha

    def create_ref(self, name: str, target: str) -> None:
        if self.read_ref(name) is not None:
            raise RefExistsError(name)
        try:
            self._repo.git.update_ref("-m", "retcon: backup before rewrite", name, target, _ZERO_OID)
        except GitCommandError as exc:
            if self.read_ref(name) is not None:
                raise RefExistsError(name) from exc
            raise StorageError(f"cannot create {name}: {exc}") from exc

    def update_ref(self, name: str, old_expected: str, new_target: str) -> None:
        try:
            self._repo.git.update_ref("-m", "retcon: rewrite history", name, new_target, old_expected)
        except GitCommandError as exc:
            raise RefConflictError(name, old_expected, self.read_ref(name)) from exc

    def delete_ref(self, name: str) -> None:
        try:
            self._repo.git.update_ref("-d", name)
        except GitCommandError as exc:
            raise StorageError(f"cannot delete {name}: {exc}") from exc

    # -- working tree --------------------------------------------------------

    def stash_save(self, message: str) -> str | None:
        if not self._repo.is_dirty(untracked_files=True):
            return None
        try:
            self._repo.git.stash("push", "--include-untracked", "-m", message)
            handle: str = self._repo.git.rev_parse("refs/stash")
        except GitCommandError as exc:
            raise StorageError(f"git stash failed: {exc}") from exc
        return handle.strip()

    def stash_restore(self, handle: str) -> None:
        try:
            entries = self._repo.git.stash("list", "--format=%H").splitlines()
        except GitCommandError as exc:
            raise StorageError(f"git stash list failed: {exc}") from exc
        if handle not in entries:
            raise StorageError(f"stash {handle[:7]} not found")
        try:
            self._repo.git.stash("pop", f"stash@{{{entries.index(handle)}}}")
        except GitCommandError as exc:
            raise StorageError(f"git stash pop failed: {exc}") from exc

    def sync_worktree(self, name: str, old_target: str, new_target: str) -> None:
        """Bring index and worktree from *old_target*'s tree to *new_target*'s tree.

        Called right after the branch moved, while the tree is clean (any
        local work is stashed), so the two-way merge cannot lose changes.
        """
        if name != f"refs/heads/{self.current_branch()}":
            return
        try:
            self._repo.git.read_tree("-m", "-u", old_target, new_target)
        except GitCommandError as exc:
            raise StorageError(f"git read-tree failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _to_original(commit: Commit, position: int) -> OriginalCommit:
    message = commit.message
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    return OriginalCommit(
        commit_id=commit.hexsha,
        parent_ids=tuple(p.hexsha for p in commit.parents),
        author=Signature(
            name=commit.author.name or "",
            email=commit.author.email or "",
            when=commit.authored_datetime,
        ),
        committer=Signature(
            name=commit.committer.name or "",
            email=commit.committer.email or "",
            when=commit.committed_datetime,
        ),
        message=message,
        tree_id=commit.tree.hexsha,
        position=position,
    )


def _git_time(when: datetime) -> str:
    """Git's internal date format, ``<unix seconds> <+HHMM>``."""
    offset = when.utcoffset() or timedelta(0)
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    minutes = abs(minutes)
    return f"{int(when.timestamp())} {sign}{minutes // 60:02d}{minutes % 60:02d}"
