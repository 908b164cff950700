"""flowkeeper rules: validate and describe exported rule files."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from flowkeeper.clock import SystemClock
from flowkeeper.config import ConfigLoadError, load_config
from flowkeeper.domain.models import Section
from flowkeeper.domain.repositories import InMemorySectionRepository, InMemoryTaskRepository
from flowkeeper.rules.import_export import import_rules, load_rules
from flowkeeper.rules.repository import InMemoryRuleRepository
from flowkeeper.scheduling.descriptions import compute_next_run_description
from flowkeeper.service import AutomationService

console = Console()

rules_app = typer.Typer(name="rules", help="Validate and describe exported automation rules.")


def _load_payload(path: Path) -> Any:
    if not path.exists():
        console.print(f"[red]Error:[/red] file not found: {escape(str(path))}")
        raise typer.Exit(2)
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        console.print(f"[red]Error:[/red] cannot parse {escape(str(path))}: {escape(str(exc))}")
        raise typer.Exit(2) from exc


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_sections(raw: str, project_id: str) -> list[Section]:
    """``todo=To Do,done`` gives two sections; a bare id is its own name."""
    sections = []
    for order, entry in enumerate(_split_csv(raw)):
        section_id, _, name = entry.partition("=")
        sections.append(Section(section_id.strip(), project_id, name.strip() or section_id.strip(), order))
    return sections


@rules_app.command("validate")
def validate_command(
    file: Path = typer.Argument(..., help="Exported rules (JSON or YAML)"),
    sections: str = typer.Option("", "--sections", help="Comma-separated section ids that exist"),
) -> None:
    """Report which rules would import cleanly, broken, or not at all."""
    report = import_rules(_load_payload(file), _split_csv(sections))
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    for rule in report.rules:
        if rule.broken_reason is None:
            console.print(f"  [green]OK[/green] {escape(rule.name)}")
        else:
            console.print(f"  [yellow]BROKEN[/yellow] {escape(rule.name)} ({rule.broken_reason.value})")
    for error in report.errors:
        label = error.rule_id or f"#{error.index}"
        console.print(f"  [red]INVALID[/red] {escape(label)}: {escape(error.message)}")
    console.print(
        f"Imported: {report.imported_count}  Broken: {report.broken_count}  Rejected: {len(report.errors)}"
    )
    if report.errors:
        raise typer.Exit(1)


@rules_app.command("describe")
def describe_command(
    file: Path = typer.Argument(..., help="Exported rules (JSON or YAML)"),
    now: str = typer.Option("", "--now", help="ISO-8601 instant to compute next runs from"),
    config: str = typer.Option("", "--config", help="Config file for the scheduler timezone"),
    sections: str = typer.Option("", "--sections", help="Comma-separated id=Name pairs used to name sections"),
) -> None:
    """Print each rule's trigger and next run."""
    rules, errors, _ = load_rules(_load_payload(file))
    try:
        settings = load_config(config or None)
    except (ConfigLoadError, ValidationError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    clock = SystemClock()
    at = clock.now()
    if now:
        try:
            at = datetime.fromisoformat(now)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] invalid --now value: {escape(now)}")
            raise typer.Exit(2) from exc
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)

    project_id = rules[0].project_id if rules else ""

    service = AutomationService(
        InMemoryTaskRepository(),
        InMemorySectionRepository(_parse_sections(sections, project_id)),
        InMemoryRuleRepository(rules),
        clock=clock,
        config=settings,
    )
    table = Table(title="Automation rules")
    table.add_column("Rule")
    table.add_column("Trigger")
    table.add_column("Next run")
    for rule in rules:
        next_run = (
            compute_next_run_description(rule.trigger, at, enabled=rule.enabled, tz=settings.scheduler.tzinfo)
            if rule.is_scheduled
            else "-"
        )
        table.add_row(escape(rule.name), escape(service.executor.describe_trigger(rule)), escape(next_run))
    console.print(table)
    for error in errors:
        console.print(f"[red]INVALID[/red] #{error.index}: {escape(error.message)}")
    if errors:
        raise typer.Exit(1)
