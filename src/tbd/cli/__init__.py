"""
tbd CLI - Main application entry point.

This module sets up the Typer CLI application with its subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from tbd import __version__
from tbd.cli import attic, sync
from tbd.core.config.env import load_layered_env

app = typer.Typer(
    name="tbd",
    help="Git-native issue tracking",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def configure_logging(debug: bool) -> None:
    """Send log records to stderr; DEBUG with --debug, warnings otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"tbd version {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    tbd - git-native issue tracking.

    Records live on a dedicated git branch and are merged field by field
    when clones sync.

    Quick Start:
        1. tbd sync init     # Create .tbd/ and the sync branch
        2. tbd sync          # Share records with the remote
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    configure_logging(debug)

    # Store debug flag in context for subcommands
    ctx.obj = {"debug": debug}


app.add_typer(sync.app, name="sync")
app.add_typer(attic.app, name="attic")


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
