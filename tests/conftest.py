"""Shared fixtures for flowkeeper tests."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import pytest

from flowkeeper.clock import FakeClock
from flowkeeper.domain.models import Section, Task
from flowkeeper.domain.repositories import InMemorySectionRepository, InMemoryTaskRepository
from flowkeeper.execution.notifications import CollectingSink
from flowkeeper.rules.models import AutomationRule
from flowkeeper.rules.repository import InMemoryRuleRepository
from flowkeeper.service import AutomationService

PROJECT_ID = "p1"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("FLOWKEEPER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    """Monday 2026-01-05 09:00 UTC."""
    return FakeClock()


@pytest.fixture
def make_task(clock: FakeClock) -> Callable[..., Task]:
    def _make(task_id: str, **overrides: Any) -> Task:
        values: dict[str, Any] = {
            "id": task_id,
            "project_id": PROJECT_ID,
            "description": f"Task {task_id}",
            "created_at": clock.now(),
            "updated_at": clock.now(),
        }
        values.update(overrides)
        return Task(**values)

    return _make


@pytest.fixture
def make_rule() -> Callable[..., AutomationRule]:
    def _make(rule_id: str, trigger: dict[str, Any], action: dict[str, Any], **overrides: Any) -> AutomationRule:
        data: dict[str, Any] = {
            "id": rule_id,
            "projectId": PROJECT_ID,
            "name": f"Rule {rule_id}",
            "trigger": trigger,
            "action": action,
            "createdAt": datetime(2026, 1, 1).isoformat(),
            "updatedAt": datetime(2026, 1, 1).isoformat(),
        }
        data.update(overrides)
        return AutomationRule.model_validate(data)

    return _make


@dataclass
class Board:
    clock: FakeClock
    tasks: InMemoryTaskRepository
    sections: InMemorySectionRepository
    rules: InMemoryRuleRepository
    sink: CollectingSink
    service: AutomationService


@pytest.fixture
def board(clock: FakeClock) -> Board:
    """Project ``p1`` with sections todo, doing and done, and no tasks or rules."""
    sections = InMemorySectionRepository(
        [
            Section("todo", PROJECT_ID, "To Do", 0),
            Section("doing", PROJECT_ID, "Doing", 1),
            Section("done", PROJECT_ID, "Done", 2),
        ]
    )
    tasks = InMemoryTaskRepository()
    rules = InMemoryRuleRepository()
    sink = CollectingSink()
    counter = iter(range(1, 10_000))
    service = AutomationService(
        tasks,
        sections,
        rules,
        clock=clock,
        sink=sink,
        id_factory=lambda: f"new-{next(counter)}",
    )
    return Board(clock, tasks, sections, rules, sink, service)
