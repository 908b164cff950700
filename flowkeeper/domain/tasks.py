"""Task business operations the automation actions call into."""

from __future__ import annotations

import logging
from datetime import datetime

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.domain.models import DomainEvent, EventType, Task
from flowkeeper.domain.repositories import TaskRepository
from flowkeeper.exceptions import EntityNotFoundError

logger = logging.getLogger(__name__)


class TaskService:
    """Completion cascade over the parent/child task tree."""

    def __init__(self, task_repo: TaskRepository, clock: Clock | None = None) -> None:
        self._task_repo = task_repo
        self._clock = clock or SystemClock()

    def cascade_complete(
        self,
        task_id: str,
        completed: bool,
        *,
        depth: int = 0,
        triggered_by_rule: str | None = None,
    ) -> list[DomainEvent]:
        """Set completion on a task and, when completing, on all its descendants.

        The task's own event carries ``depth``; descendant events carry
        ``depth + 1``. Descendants already completed are left untouched.
        """
        task = self._task_repo.find_by_id(task_id)
        if task is None:
            raise EntityNotFoundError("task", task_id)
        now = self._clock.now()
        events = [self._set_completed(task, completed, now, depth, triggered_by_rule)]
        if completed:
            for descendant in self.collect_descendants(task_id):
                if descendant.completed:
                    continue
                events.append(self._set_completed(descendant, True, now, depth + 1, triggered_by_rule))
        logger.debug("cascade_complete task=%s completed=%s events=%d", task_id, completed, len(events))
        return events

    def collect_descendants(self, task_id: str) -> list[Task]:
        """All descendants, depth-first, parents before their children."""
        result: list[Task] = []
        stack = list(reversed(self._task_repo.find_by_parent_task_id(task_id)))
        seen: set[str] = {task_id}
        while stack:
            child = stack.pop()
            if child.id in seen:
                continue
            seen.add(child.id)
            result.append(child)
            stack.extend(reversed(self._task_repo.find_by_parent_task_id(child.id)))
        return result

    def _set_completed(
        self,
        task: Task,
        completed: bool,
        now: datetime,
        depth: int,
        triggered_by_rule: str | None,
    ) -> DomainEvent:
        completed_at = now if completed else None
        self._task_repo.update(task.id, completed=completed, completed_at=completed_at, updated_at=now)
        return DomainEvent(
            type=EventType.TASK_UPDATED,
            entity_id=task.id,
            project_id=task.project_id,
            changes={"completed": completed, "completedAt": completed_at},
            previous_values={"completed": task.completed, "completedAt": task.completed_at},
            depth=depth,
            triggered_by_rule=triggered_by_rule,
        )
