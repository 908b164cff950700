"""Task, section and domain-event records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Committed mutation kinds raised by the task store."""

    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_DELETED = "task.deleted"
    SECTION_CREATED = "section.created"
    SECTION_UPDATED = "section.updated"
    SCHEDULE_FIRED = "schedule.fired"


@dataclass(slots=True)
class Task:
    id: str
    project_id: str
    description: str
    created_at: datetime
    updated_at: datetime
    section_id: str | None = None
    parent_task_id: str | None = None
    notes: str = ""
    due_date: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None
    order: float = 0.0
    moved_to_section_at: datetime | None = None

    @property
    def is_subtask(self) -> bool:
        return self.parent_task_id is not None


@dataclass(slots=True)
class Section:
    id: str
    project_id: str
    name: str
    order: float = 0.0


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Already-applied mutation notification.

    ``changes`` and ``previous_values`` use the persisted camelCase field names
    (``sectionId``, ``completed``, ``name``) so hosts can forward their own
    change sets unchanged. ``depth`` is the cascade generation counter.
    """

    type: EventType
    entity_id: str
    project_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    previous_values: dict[str, Any] = field(default_factory=dict)
    depth: int = 0
    triggered_by_rule: str | None = None
