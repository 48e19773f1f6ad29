"""retcon rewrite — stage edits, deletions and moves, then rewrite the branch.

All staging options are repeatable and applied in the order
``--set``, ``--delete``, ``--move``::

    retcon rewrite --set a1b2c3d:message="Fix typo in parser"
    retcon rewrite --set a1b2c3d,f9e8d7c:author-email=alice@example.com
    retcon rewrite --delete 0badc0de --move 5eed5eed:up --yes

``--set`` with several comma-separated commits is one batch edit.  Author
edits are copied to the matching committer field unless the committer
field has its own ``--set`` or ``-s/--separate-author-committer`` is given.

Behaviour
---------
1. The change summary is printed.
2. ``--dry-run`` stops here.
3. Without ``--yes`` the operator is asked to confirm.
4. The rewrite runs as one transaction: auto-stash, backup ref, new
   commits, compare-and-swap of the branch, unstash.  Any failure before
   the branch moves leaves the repository exactly as it was.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from retcon.cli._repo import require_store, settings_for
from retcon.errors import ExitCode, RetconError
from retcon.services.edit_session import EditSession, NewTipSummary

logger = logging.getLogger(__name__)

app = typer.Typer()


# ---------------------------------------------------------------------------
# Option parsing
# ---------------------------------------------------------------------------


def parse_set_option(raw: str) -> tuple[list[str], str, str]:
    """Split ``SHA[,SHA…]:FIELD=VALUE`` into commits, field and value.

    Raises:
        ValueError: *raw* does not have that shape.
    """
    commits_part, sep, assignment = raw.partition(":")
    if not sep:
        raise ValueError(f"expected SHA:FIELD=VALUE, got {raw!r}")
    field_name, sep, value = assignment.partition("=")
    if not sep or not field_name.strip():
        raise ValueError(f"expected SHA:FIELD=VALUE, got {raw!r}")
    commits = [c.strip() for c in commits_part.split(",") if c.strip()]
    if not commits:
        raise ValueError(f"no commit given in {raw!r}")
    return commits, field_name.strip(), value


def parse_move_option(raw: str) -> tuple[str, str]:
    """Split ``SHA:up`` / ``SHA:down`` into commit and direction."""
    commit, sep, direction = raw.rpartition(":")
    direction = direction.strip().lower()
    if not sep or not commit.strip() or direction not in ("up", "down"):
        raise ValueError(f"expected SHA:up or SHA:down, got {raw!r}")
    return commit.strip(), direction


# ---------------------------------------------------------------------------
# Testable core
# ---------------------------------------------------------------------------


def stage_changes(
    session: EditSession,
    *,
    sets: list[str],
    deletes: list[str],
    moves: list[str],
) -> None:
    """Apply every staging option to *session*.

    Raises:
        ValueError:  a malformed option.
        RetconError: an edit was rejected (unknown commit, bad value, …).
    """
    for raw in sets:
        commits, field_name, value = parse_set_option(raw)
        session.apply_edit(commits, field_name, value)
    for commit in deletes:
        if not session.changes.is_deleted(session.resolve(commit)):
            session.toggle_delete(commit)
    for raw in moves:
        commit, direction = parse_move_option(raw)
        session.move_commit(session.position_of(commit), direction)


def _report(summary: NewTipSummary) -> None:
    old = summary.old_tip[:7] if summary.old_tip else "none"
    new = summary.new_tip[:7] if summary.new_tip else "none"
    typer.echo(f"✅ Rewrote {summary.branch}: {old} → {new}")
    typer.echo(f"   {summary.rewritten} commit(s) written, {summary.deleted} deleted")
    typer.echo(f"   Backup saved at {summary.backup_ref}")
    for warning in summary.warnings:
        typer.echo(f"⚠️ {warning}")


# ---------------------------------------------------------------------------
# Typer entry point
# ---------------------------------------------------------------------------


@app.callback(invoke_without_command=True)
def rewrite(
    sets: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override a field: SHA[,SHA…]:FIELD=VALUE (repeatable).",
        metavar="SHA:FIELD=VALUE",
    ),
    deletes: Optional[list[str]] = typer.Option(
        None, "--delete", help="Drop a commit from the branch (repeatable).", metavar="SHA"
    ),
    moves: Optional[list[str]] = typer.Option(
        None,
        "--move",
        help="Swap a commit with its newer (up) or older (down) neighbour (repeatable).",
        metavar="SHA:up|down",
    ),
    separate: bool = typer.Option(
        False,
        "--separate-author-committer",
        "-s",
        help="Do not copy author edits into the committer fields.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the summary and stop."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", help="Maximum number of commits to load.", min=1
    ),
    path: Optional[pathlib.Path] = typer.Option(
        None, "--path", help="Path inside the repository (default: current directory)."
    ),
) -> None:
    """Rewrite commit metadata, drop commits or reorder them on the current branch."""
    store = require_store(path)
    try:
        session = EditSession(store, settings_for(store), history_limit=limit)
        if separate:
            session.sync_author_to_committer = False
        stage_changes(session, sets=sets or [], deletes=deletes or [], moves=moves or [])

        if not session.is_dirty:
            typer.echo("Nothing to rewrite.")
            return

        for line in session.change_summary():
            typer.echo(line)
        if dry_run:
            typer.echo("(dry run) No changes written.")
            return
        if not yes and not typer.confirm("Rewrite history?", default=False):
            typer.echo("Aborted.")
            raise typer.Exit(code=ExitCode.USER_ERROR)

        summary = session.write_changes()
    except typer.Exit:
        raise
    except ValueError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=ExitCode.USER_ERROR)
    except RetconError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)
    except Exception as exc:
        typer.echo(f"❌ retcon rewrite failed: {exc}")
        logger.error("❌ retcon rewrite error: %s", exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)

    if summary.noop:
        typer.echo("Nothing to rewrite.")
        return
    _report(summary)
