"""Single-slot, time-bounded undo for the most recent automation execution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.config.models import UndoConfig
from flowkeeper.domain.repositories import TaskRepository
from flowkeeper.rules.models import ActionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UndoSnapshot:
    """Pre-mutation state of one action's target.

    ``previous_state`` holds task field values keyed by attribute name.
    ``subtask_snapshots`` maps descendant task id to its own previous state when
    completion cascaded.
    """

    rule_id: str
    rule_name: str
    action_type: ActionType
    target_entity_id: str
    previous_state: dict[str, Any]
    captured_at: datetime
    subtask_snapshots: dict[str, dict[str, Any]] = field(default_factory=dict)
    created_entity_id: str | None = None

    def with_created_entity(self, entity_id: str) -> "UndoSnapshot":
        return replace(self, created_entity_id=entity_id)


class UndoService:
    """Holds at most one snapshot; a newer capture evicts the older one."""

    def __init__(self, clock: Clock | None = None, config: UndoConfig | None = None) -> None:
        self._clock = clock or SystemClock()
        self._expiry = timedelta(seconds=(config or UndoConfig()).expiry_seconds)
        self._snapshot: UndoSnapshot | None = None

    def capture(self, snapshot: UndoSnapshot) -> None:
        self._snapshot = snapshot

    def get(self) -> UndoSnapshot | None:
        """The live snapshot, or ``None`` once it has expired."""
        snapshot = self._snapshot
        if snapshot is None:
            return None
        if self._clock.now() - snapshot.captured_at > self._expiry:
            self._snapshot = None
            return None
        return snapshot

    def clear(self) -> None:
        self._snapshot = None

    def perform_undo(self, task_repo: TaskRepository) -> bool:
        """Restore the live snapshot. ``False`` means there was nothing to undo."""
        snapshot = self.get()
        if snapshot is None:
            return False
        apply_undo(snapshot, task_repo)
        self._snapshot = None
        logger.info("Undid %s from rule %s", snapshot.action_type.value, snapshot.rule_id)
        return True


def apply_undo(snapshot: UndoSnapshot, task_repo: TaskRepository) -> None:
    action_type = snapshot.action_type
    if action_type is ActionType.CREATE_CARD:
        task_repo.delete(snapshot.created_entity_id or snapshot.target_entity_id)
        return
    if task_repo.find_by_id(snapshot.target_entity_id) is None:
        return
    if snapshot.previous_state:
        task_repo.update(snapshot.target_entity_id, **snapshot.previous_state)
    for task_id, previous in snapshot.subtask_snapshots.items():
        if task_repo.find_by_id(task_id) is not None:
            task_repo.update(task_id, **previous)
