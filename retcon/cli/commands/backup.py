"""retcon backup — manage the backup ref left by a rewrite.

Subcommands
-----------
``retcon backup show``
    Print the backup ref and the current branch tip.

``retcon backup restore``
    Move the branch back onto the backup (compare-and-swap against the
    current tip) and delete the backup ref.  Undoes the last rewrite.

``retcon backup drop``
    Delete the backup ref, keeping the rewritten history.  Required
    before the next ``retcon rewrite`` on the same branch.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from retcon.cli._repo import require_store, settings_for
from retcon.errors import ExitCode, RetconError
from retcon.services.backup import drop_backup, restore_backup, show_backup

logger = logging.getLogger(__name__)

app = typer.Typer(no_args_is_help=True)

_PATH_OPTION = typer.Option(
    None, "--path", help="Path inside the repository (default: current directory)."
)


def _fail(command: str, exc: Exception) -> typer.Exit:
    if isinstance(exc, RetconError):
        typer.echo(f"❌ {exc}")
        return typer.Exit(code=exc.exit_code)
    typer.echo(f"❌ retcon backup {command} failed: {exc}")
    logger.error("❌ retcon backup %s error: %s", command, exc, exc_info=True)
    return typer.Exit(code=ExitCode.INTERNAL_ERROR)


@app.command("show")
def show(path: Optional[pathlib.Path] = _PATH_OPTION) -> None:
    """Show where the backup ref and the branch point."""
    store = require_store(path)
    try:
        settings = settings_for(store)
        status = show_backup(store, settings.backup_ref_for(store.current_branch()))
    except Exception as exc:
        raise _fail("show", exc)

    if not status.exists:
        typer.echo(f"No backup for {status.branch}.")
        return
    typer.echo(f"{status.backup_ref} → {status.backup_tip}")
    typer.echo(f"refs/heads/{status.branch} → {status.branch_tip}")


@app.command("restore")
def restore(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    path: Optional[pathlib.Path] = _PATH_OPTION,
) -> None:
    """Reset the branch to the backup and delete the backup ref."""
    store = require_store(path)
    try:
        settings = settings_for(store)
        backup_ref = settings.backup_ref_for(store.current_branch())
        if not yes and not typer.confirm(f"Reset the branch to {backup_ref}?", default=False):
            typer.echo("Aborted.")
            raise typer.Exit(code=ExitCode.USER_ERROR)
        status = restore_backup(store, backup_ref, stash_message=settings.stash_message)
    except typer.Exit:
        raise
    except Exception as exc:
        raise _fail("restore", exc)

    tip = status.branch_tip[:7] if status.branch_tip else "none"
    typer.echo(f"✅ Restored {status.branch} to {tip}; removed {backup_ref}")


@app.command("drop")
def drop(path: Optional[pathlib.Path] = _PATH_OPTION) -> None:
    """Delete the backup ref and keep the rewritten history."""
    store = require_store(path)
    try:
        settings = settings_for(store)
        backup_ref = settings.backup_ref_for(store.current_branch())
        target = drop_backup(store, backup_ref)
    except Exception as exc:
        raise _fail("drop", exc)

    typer.echo(f"✅ Dropped {backup_ref} (was {target[:7]})")
