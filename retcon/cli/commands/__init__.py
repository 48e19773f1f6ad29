"""retcon subcommands, one Typer app per module."""
