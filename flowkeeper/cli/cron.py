"""flowkeeper cron: parse and describe cron strings."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.markup import escape

from flowkeeper.scheduling.cron import describe_cron, parse_cron_expression, to_cron_expression

console = Console()

cron_app = typer.Typer(name="cron", help="Parse and describe 5-field cron expressions.")


@cron_app.command("parse")
def parse_command(expression: str = typer.Argument(..., help="Cron expression, e.g. '0 9 * * 1-5'")) -> None:
    """Print the structured schedule as JSON."""
    result = parse_cron_expression(expression)
    if not result.success or result.schedule is None:
        field = f" ({result.field})" if result.field else ""
        console.print(f"[red]Invalid cron expression{field}:[/red] {escape(result.error or '')}")
        raise typer.Exit(1)
    payload = result.schedule.model_dump(by_alias=True, exclude={"kind"})
    payload["expression"] = to_cron_expression(result.schedule)
    typer.echo(json.dumps(payload))


@cron_app.command("describe")
def describe_command(expression: str = typer.Argument(..., help="Cron expression")) -> None:
    """Print the human-readable schedule."""
    result = parse_cron_expression(expression)
    if not result.success or result.schedule is None:
        console.print(f"[red]Invalid cron expression:[/red] {escape(result.error or '')}")
        raise typer.Exit(1)
    typer.echo(describe_cron(result.schedule))
