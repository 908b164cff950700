"""Task-store domain types consumed by the automation engine."""

from flowkeeper.domain.events import DomainEventBus
from flowkeeper.domain.models import DomainEvent, EventType, Section, Task
from flowkeeper.domain.repositories import (
    InMemorySectionRepository,
    InMemoryTaskRepository,
    SectionRepository,
    TaskRepository,
)
from flowkeeper.domain.tasks import TaskService

__all__ = [
    "DomainEvent",
    "DomainEventBus",
    "EventType",
    "InMemorySectionRepository",
    "InMemoryTaskRepository",
    "Section",
    "SectionRepository",
    "Task",
    "TaskRepository",
    "TaskService",
]
