"""Exit-code contract and exception taxonomy for retcon.

Every error the engine raises derives from :class:`RetconError` and carries
the :class:`ExitCode` the CLI should terminate with.  Services raise; only
the CLI layer turns these into ``typer.Exit``.
"""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, invalid input, refused operation)
    2 — repo-not-found / repository in an unusable state
    3 — storage / internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    REPO_NOT_FOUND = 2
    INTERNAL_ERROR = 3


class RetconError(Exception):
    """Base exception for retcon errors."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code


# ---------------------------------------------------------------------------
# Repository-level errors
# ---------------------------------------------------------------------------


class NotARepository(RetconError):
    """Raised when the given path is not inside a git repository."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Not a git repository: {path}", exit_code=ExitCode.REPO_NOT_FOUND)
        self.path = path


class RebaseInProgress(RetconError):
    def __init__(self) -> None:
        super().__init__(
            "Rebase in progress - complete or abort first",
            exit_code=ExitCode.REPO_NOT_FOUND,
        )


class MergeInProgress(RetconError):
    def __init__(self) -> None:
        super().__init__(
            "Merge in progress - complete or abort first",
            exit_code=ExitCode.REPO_NOT_FOUND,
        )


class DetachedHead(RetconError):
    """Raised when HEAD does not point at a branch; there is no ref to rewrite."""

    def __init__(self) -> None:
        super().__init__(
            "HEAD is detached - check out a branch first",
            exit_code=ExitCode.REPO_NOT_FOUND,
        )


class NoCommits(RetconError):
    def __init__(self) -> None:
        super().__init__("No commits found in repository", exit_code=ExitCode.USER_ERROR)


class NoBackupRef(RetconError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"No backup ref {ref!r} exists", exit_code=ExitCode.USER_ERROR)
        self.ref = ref


# ---------------------------------------------------------------------------
# Edit-boundary errors
# ---------------------------------------------------------------------------


class UnknownCommit(RetconError):
    """An operation addressed an identity that is not in the loaded snapshot."""

    def __init__(self, commit_id: str) -> None:
        super().__init__(f"Commit not found: {commit_id}", exit_code=ExitCode.USER_ERROR)
        self.commit_id = commit_id


class ValidationError(RetconError):
    """A value supplied to an edit was rejected before being stored.

    Attributes:
        field:  Name of the field (or ``"position"`` for reorder bounds).
        reason: Human-readable explanation.
    """

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}", exit_code=ExitCode.USER_ERROR)
        self.field = field
        self.reason = reason


class MergeCommitUnreorderable(RetconError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(
            f"Cannot reorder merge commit {commit_id[:7]}",
            exit_code=ExitCode.USER_ERROR,
        )
        self.commit_id = commit_id


class FilterActive(RetconError):
    def __init__(self) -> None:
        super().__init__("Cannot reorder while filtering", exit_code=ExitCode.USER_ERROR)


# ---------------------------------------------------------------------------
# Planning errors (raised before any storage I/O)
# ---------------------------------------------------------------------------


class CyclicReorder(RetconError):
    """The requested order would make a commit descend from its own descendant."""

    def __init__(self, commit_id: str, detail: str) -> None:
        super().__init__(
            f"Reorder of {commit_id[:7]} is not representable: {detail}",
            exit_code=ExitCode.USER_ERROR,
        )
        self.commit_id = commit_id


class EmptyHistory(RetconError):
    def __init__(self) -> None:
        super().__init__(
            "Cannot delete all commits: the branch would have no history left",
            exit_code=ExitCode.USER_ERROR,
        )


# ---------------------------------------------------------------------------
# Apply-protocol errors
# ---------------------------------------------------------------------------


class DirtyTreeStashFailed(RetconError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Could not stash uncommitted changes: {cause}")
        self.cause = cause


class BackupRefExists(RetconError):
    """A backup ref from an earlier, unresolved rewrite is still present."""

    def __init__(self, ref: str) -> None:
        super().__init__(
            f"Backup ref {ref!r} already exists. "
            "Restore or drop it (`retcon backup`) before rewriting again.",
            exit_code=ExitCode.USER_ERROR,
        )
        self.ref = ref


class RewriteFailed(RetconError):
    """Writing a new commit object failed part-way through the plan.

    Attributes:
        at:          Original identity of the commit being written.
        cause:       The underlying storage exception.
        partial_map: ``original -> new`` identities written before the failure.
    """

    def __init__(
        self,
        at: str,
        cause: Exception,
        partial_map: dict[str, str] | None = None,
    ) -> None:
        super().__init__(f"Cannot rewrite history at {at[:7]}: {cause}")
        self.at = at
        self.cause = cause
        self.partial_map = dict(partial_map or {})


class RefUpdateConflict(RetconError):
    """The branch moved underneath us between load and apply."""

    def __init__(self, ref: str, expected: str, cause: Exception | None = None) -> None:
        super().__init__(
            f"Branch {ref!r} no longer points at {expected[:7]}; nothing was changed",
            exit_code=ExitCode.USER_ERROR,
        )
        self.ref = ref
        self.expected = expected
        self.cause = cause


class StashRestoreFailed(RetconError):
    """Non-fatal: the rewrite succeeded but the auto-stash could not be re-applied."""

    def __init__(self, handle: str, cause: Exception) -> None:
        super().__init__(
            f"Could not restore stashed changes ({handle[:7]}): {cause}. "
            "Use 'git stash pop' manually."
        )
        self.handle = handle
        self.cause = cause


class WorktreeSyncFailed(RetconError):
    """Non-fatal: the branch moved but the checked-out files still show the old tip."""

    def __init__(self, ref: str, old_tip: str, new_tip: str, cause: Exception) -> None:
        super().__init__(
            f"{ref} now points at {new_tip[:7]} but the working tree was not updated: {cause}. "
            f"Run 'git read-tree -m -u {old_tip[:7]} {new_tip[:7]}'."
        )
        self.ref = ref
        self.old_tip = old_tip
        self.new_tip = new_tip
        self.cause = cause
