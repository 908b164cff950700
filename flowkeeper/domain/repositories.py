"""Repository contracts for tasks and sections, with in-memory implementations."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock
from typing import Any, Iterable, Protocol

from flowkeeper.domain.models import Section, Task


class TaskRepository(Protocol):
    def find_by_id(self, task_id: str) -> Task | None: ...

    def find_all(self) -> list[Task]: ...

    def find_by_project_id(self, project_id: str) -> list[Task]: ...

    def find_by_parent_task_id(self, parent_task_id: str) -> list[Task]: ...

    def find_by_section_id(self, section_id: str) -> list[Task]: ...

    def create(self, task: Task) -> Task: ...

    def update(self, task_id: str, **changes: Any) -> Task | None: ...

    def delete(self, task_id: str) -> bool: ...


class SectionRepository(Protocol):
    def find_by_id(self, section_id: str) -> Section | None: ...

    def find_all(self) -> list[Section]: ...

    def find_by_project_id(self, project_id: str) -> list[Section]: ...

    def create(self, section: Section) -> Section: ...

    def update(self, section_id: str, **changes: Any) -> Section | None: ...

    def delete(self, section_id: str) -> bool: ...


class InMemoryTaskRepository:
    """Dict-backed task store. Returned tasks are copies."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[str, Task] = {task.id: replace(task) for task in tasks}
        self._lock = Lock()

    def find_by_id(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return replace(task) if task is not None else None

    def find_all(self) -> list[Task]:
        return [replace(task) for task in self._tasks.values()]

    def find_by_project_id(self, project_id: str) -> list[Task]:
        return [replace(t) for t in self._tasks.values() if t.project_id == project_id]

    def find_by_parent_task_id(self, parent_task_id: str) -> list[Task]:
        return [replace(t) for t in self._tasks.values() if t.parent_task_id == parent_task_id]

    def find_by_section_id(self, section_id: str) -> list[Task]:
        return [replace(t) for t in self._tasks.values() if t.section_id == section_id]

    def create(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = replace(task)
        return replace(task)

    def update(self, task_id: str, **changes: Any) -> Task | None:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._tasks[task_id] = updated
        return replace(updated)

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None


class InMemorySectionRepository:
    """Dict-backed section store."""

    def __init__(self, sections: Iterable[Section] = ()) -> None:
        self._sections: dict[str, Section] = {s.id: replace(s) for s in sections}
        self._lock = Lock()

    def find_by_id(self, section_id: str) -> Section | None:
        section = self._sections.get(section_id)
        return replace(section) if section is not None else None

    def find_all(self) -> list[Section]:
        return [replace(s) for s in self._sections.values()]

    def find_by_project_id(self, project_id: str) -> list[Section]:
        return [replace(s) for s in self._sections.values() if s.project_id == project_id]

    def create(self, section: Section) -> Section:
        with self._lock:
            self._sections[section.id] = replace(section)
        return replace(section)

    def update(self, section_id: str, **changes: Any) -> Section | None:
        with self._lock:
            current = self._sections.get(section_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._sections[section_id] = updated
        return replace(updated)

    def delete(self, section_id: str) -> bool:
        with self._lock:
            return self._sections.pop(section_id, None) is not None
