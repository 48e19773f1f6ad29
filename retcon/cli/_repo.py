"""Repository discovery for the retcon CLI.

Every subcommand starts by opening the git repository that contains
``--path`` (default: the current directory).  :func:`require_store` turns
the repository-state errors raised by
:meth:`~retcon.git_store.GitHistoryStore.open` into a clean message and
the matching exit code, so command bodies never see them.
"""
from __future__ import annotations

import logging
import pathlib

import typer

from retcon.config import RetconSettings, load_settings
from retcon.errors import RetconError
from retcon.git_store import GitHistoryStore

logger = logging.getLogger(__name__)


def require_store(path: pathlib.Path | None = None) -> GitHistoryStore:
    """Open the repository at *path* or exit with its error's exit code.

    The error text is echoed to stdout so that ``typer.testing.CliRunner``
    captures it in ``result.output``.
    """
    try:
        return GitHistoryStore.open(path)
    except RetconError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=exc.exit_code)


def settings_for(store: GitHistoryStore) -> RetconSettings:
    """Environment settings overlaid with the repository's ``.retcon.toml``."""
    return load_settings(store.root)
