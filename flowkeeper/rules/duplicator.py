"""Copy a rule into another project, remapping sections by name."""

from __future__ import annotations

import uuid
from typing import Sequence

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.domain.models import Section
from flowkeeper.rules.models import (
    TRIGGER_SECTION_SENTINEL,
    AutomationRule,
    BrokenReason,
    SectionFilter,
    is_scheduled_trigger,
)


class _SectionRemapper:
    def __init__(self, source_sections: Sequence[Section], target_sections: Sequence[Section]) -> None:
        self._source_names = {s.id: s.name for s in source_sections}
        self._target_ids: dict[str, str] = {}
        for section in target_sections:
            self._target_ids.setdefault(section.name, section.id)
        self.broken = False

    def remap(self, section_id: str | None) -> str | None:
        if section_id is None or section_id == TRIGGER_SECTION_SENTINEL:
            return section_id
        target = self._target_ids.get(self._source_names.get(section_id, ""))
        if target is None:
            self.broken = True
            return section_id
        return target


def duplicate_rule_to_project(
    rule: AutomationRule,
    target_project_id: str,
    source_sections: Sequence[Section],
    target_sections: Sequence[Section],
    clock: Clock | None = None,
    new_rule_id: str | None = None,
) -> AutomationRule:
    """A disabled ``"Copy of <name>"`` in ``target_project_id``.

    Section names are matched case-sensitively; when any reference has no
    counterpart the copy is marked ``section_deleted``.
    """
    now = (clock or SystemClock()).now()
    remapper = _SectionRemapper(source_sections, target_sections)

    trigger_update: dict[str, object] = {"section_id": remapper.remap(rule.trigger.section_id)}
    if is_scheduled_trigger(rule.trigger):
        trigger_update["last_evaluated_at"] = None
    trigger = rule.trigger.model_copy(update=trigger_update, deep=True)
    action = rule.action.model_copy(update={"section_id": remapper.remap(rule.action.section_id)}, deep=True)
    filters = [
        f.model_copy(update={"section_id": remapper.remap(f.section_id)}) if isinstance(f, SectionFilter) else f.model_copy()
        for f in rule.filters
    ]

    return rule.model_copy(
        update={
            "id": new_rule_id or uuid.uuid4().hex,
            "project_id": target_project_id,
            "name": f"Copy of {rule.name}"[:200],
            "enabled": False,
            "broken_reason": BrokenReason.SECTION_DELETED if remapper.broken else None,
            "trigger": trigger,
            "action": action,
            "filters": filters,
            "recent_executions": [],
            "execution_count": 0,
            "last_executed_at": None,
            "bulk_paused_at": None,
            "created_at": now,
            "updated_at": now,
        },
        deep=True,
    )
