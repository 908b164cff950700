"""flowkeeper config: inspect the effective configuration."""

from __future__ import annotations

import typer
import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from flowkeeper.config import ConfigLoadError, YAMLConfigLoader, load_config

console = Console()

config_app = typer.Typer(name="config", help="Show the effective configuration.")


@config_app.command("show")
def show_command(
    path: str = typer.Option("", "--path", help="Config file (defaults to FLOWKEEPER_CONFIG or ./flowkeeper.yaml)"),
) -> None:
    """Print defaults merged with YAML and FLOWKEEPER_* environment overrides."""
    try:
        config = load_config(path or None)
    except (ConfigLoadError, ValidationError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc
    source = YAMLConfigLoader.resolve_path(path or None)
    typer.echo(f"# source: {source}{'' if source.exists() else ' (not found, defaults used)'}")
    typer.echo(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False).rstrip())
