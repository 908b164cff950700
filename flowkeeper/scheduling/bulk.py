"""Bulk pause and resume of a project's scheduled rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.rules.models import is_scheduled_trigger
from flowkeeper.rules.repository import RuleRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BulkResult:
    rule_ids: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.rule_ids)


class BulkScheduleService:
    """Pause stamps ``bulk_paused_at``; resume only touches rules carrying that stamp.

    ``last_evaluated_at`` is never modified, so individually disabled rules and
    schedule bookkeeping both survive a pause/resume round trip.
    """

    def __init__(self, rule_repo: RuleRepository, clock: Clock | None = None) -> None:
        self._rule_repo = rule_repo
        self._clock = clock or SystemClock()

    def pause_all(self, project_id: str) -> BulkResult:
        now = self._clock.now()
        result = BulkResult()
        for rule in self._rule_repo.find_by_project_id(project_id):
            if not rule.enabled or not is_scheduled_trigger(rule.trigger):
                continue
            self._rule_repo.update(rule.id, enabled=False, bulk_paused_at=now)
            result.rule_ids.append(rule.id)
        logger.info("Paused %d scheduled rule(s) in project %s", result.count, project_id)
        return result

    def resume_all(self, project_id: str) -> BulkResult:
        result = BulkResult()
        for rule in self._rule_repo.find_by_project_id(project_id):
            if rule.bulk_paused_at is None:
                continue
            self._rule_repo.update(rule.id, enabled=True, bulk_paused_at=None)
            result.rule_ids.append(rule.id)
        logger.info("Resumed %d scheduled rule(s) in project %s", result.count, project_id)
        return result
