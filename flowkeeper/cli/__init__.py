"""CLI tools: flowkeeper cron, flowkeeper rules, flowkeeper config."""

from __future__ import annotations

import logging
import sys
from importlib import metadata

import typer

from flowkeeper.cli.config import config_app
from flowkeeper.cli.cron import cron_app
from flowkeeper.cli.rules import rules_app

app = typer.Typer(
    name="flowkeeper",
    help="Flowkeeper: automation rules and scheduled triggers for task boards.",
    no_args_is_help=True,
)

app.add_typer(cron_app, name="cron")
app.add_typer(rules_app, name="rules")
app.add_typer(config_app, name="config")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine decisions to stderr"),
) -> None:
    """Configure logging for every subcommand."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("version")
def version_command() -> None:
    """Print the installed package version."""
    try:
        version = metadata.version("flowkeeper")
    except metadata.PackageNotFoundError:
        version = "unknown"
    typer.echo(f"flowkeeper {version}")


def main() -> None:
    """CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)
