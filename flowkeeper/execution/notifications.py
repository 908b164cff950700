"""Batched user-facing summaries of automation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from flowkeeper.rules.models import ExecutionType


@dataclass(slots=True)
class RuleRunSummary:
    rule_id: str
    rule_name: str
    task_names: list[str] = field(default_factory=list)

    @property
    def batch_size(self) -> int:
        return len(self.task_names)


@dataclass(slots=True)
class ExecutionSummary:
    """Everything one top-level call did, grouped by rule in first-seen order."""

    execution_type: ExecutionType | None = None
    runs: dict[str, RuleRunSummary] = field(default_factory=dict)
    truncated: bool = False
    undo_available: bool = False

    def record(self, rule_id: str, rule_name: str, task_name: str) -> None:
        run = self.runs.get(rule_id)
        if run is None:
            run = self.runs[rule_id] = RuleRunSummary(rule_id, rule_name)
        run.task_names.append(task_name)

    @property
    def action_count(self) -> int:
        return sum(run.batch_size for run in self.runs.values())

    @property
    def is_empty(self) -> bool:
        return not self.runs

    def messages(self) -> list[str]:
        return [format_toast(run.rule_name, run.task_names[0], run.batch_size) for run in self.runs.values()]


class NotificationSink(Protocol):
    def notify(self, summary: ExecutionSummary) -> None: ...


class CollectingSink:
    """Keeps every summary in memory."""

    def __init__(self) -> None:
        self.summaries: list[ExecutionSummary] = []

    def notify(self, summary: ExecutionSummary) -> None:
        self.summaries.append(summary)


def format_toast(rule_name: str, task_name: str, batch_size: int = 1) -> str:
    if batch_size == 1:
        return f"⚡ Automation: {rule_name} ran on {task_name}"
    return f"⚡ Automation: {rule_name} ran on {batch_size} tasks"


def format_tick_summary(rules_fired: int, tasks_affected: int, *, is_catch_up: bool = False) -> str:
    rules = "1 scheduled rule" if rules_fired == 1 else f"{rules_fired} scheduled rules"
    tasks = "1 task" if tasks_affected == 1 else f"{tasks_affected} tasks"
    prefix = "Caught up: " if is_catch_up else ""
    return f"{prefix}{rules} ran on {tasks}"
