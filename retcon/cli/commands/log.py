"""retcon log — list the history a rewrite would operate on.

Loads the current branch along its first-parent chain (the same window
``retcon rewrite`` edits) and prints one line per commit, newest first::

    a1b2c3d  2024-01-15 14:30 +0000  Alice Example    add parser
    f9e8d7c  2024-01-14 09:12 +0000  Bob Example      merge branch 'x'  (merge)

``--grep`` narrows the list with a case-insensitive match on author name,
author email, message and short id.
"""
from __future__ import annotations

import logging
import pathlib
from typing import Optional

import typer

from retcon.cli._repo import require_store, settings_for
from retcon.errors import ExitCode, RetconError
from retcon.services.edit_session import EditSession
from retcon.services.pending_changes import EffectiveCommit

logger = logging.getLogger(__name__)

app = typer.Typer()

_AUTHOR_WIDTH = 16


def format_row(row: EffectiveCommit) -> str:
    when = row.author.when.strftime("%Y-%m-%d %H:%M %z")
    author = row.author.name[:_AUTHOR_WIDTH].ljust(_AUTHOR_WIDTH)
    marker = "  (merge)" if row.original.is_merge else ""
    return f"{row.original.short_id}  {when}  {author} {row.summary}{marker}"


@app.callback(invoke_without_command=True)
def log(
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-n",
        help="Maximum number of commits to load (default: history_limit setting).",
        min=1,
    ),
    grep: Optional[str] = typer.Option(
        None,
        "--grep",
        help="Only show commits matching TEXT (author, email, message or id).",
        metavar="TEXT",
    ),
    path: Optional[pathlib.Path] = typer.Option(
        None, "--path", help="Path inside the repository (default: current directory)."
    ),
) -> None:
    """Show the loaded history of the current branch, newest first."""
    store = require_store(path)
    try:
        session = EditSession(store, settings_for(store), history_limit=limit)
        if grep and not session.set_filter(grep):
            typer.echo("No matching commits.")
            return
        rows = session.visible_commits()
    except RetconError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)
    except Exception as exc:
        typer.echo(f"❌ retcon log failed: {exc}")
        logger.error("❌ retcon log error: %s", exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)

    if not rows:
        typer.echo("No matching commits.")
        return
    typer.echo(f"On branch {session.branch} ({len(session.snapshot)} commit(s) loaded)")
    for row in rows:
        typer.echo(format_row(row))
