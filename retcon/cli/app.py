"""retcon CLI — Typer application root.

Entry point for the ``retcon`` console script.  Registers the ``log``,
``rewrite`` and ``backup`` subcommands as Typer sub-applications.
"""
from __future__ import annotations

import logging

import typer

from retcon import __version__
from retcon.cli.commands import backup, log, rewrite
from retcon.config import get_settings

cli = typer.Typer(
    name="retcon",
    help="retcon — edit, delete and reorder commits in an existing git history.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"retcon {__version__}")
        raise typer.Exit()


@cli.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log engine activity (DEBUG level) to stderr."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Configure logging before any subcommand runs."""
    debug = verbose or get_settings().debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


cli.add_typer(log.app, name="log", help="List the history a rewrite would operate on.")
cli.add_typer(rewrite.app, name="rewrite", help="Edit, delete or reorder commits and write the result.")
cli.add_typer(backup.app, name="backup", help="Inspect, restore or drop the pre-rewrite backup ref.")


if __name__ == "__main__":
    cli()
