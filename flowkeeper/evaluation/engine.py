"""Pure rule evaluation: one domain event plus a rule set gives candidate actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from flowkeeper.domain.models import DomainEvent, EventType, Section, Task
from flowkeeper.evaluation.filters import FilterContext, evaluate_filters
from flowkeeper.rules.index import RuleIndex, build_rule_index
from flowkeeper.rules.models import (
    TRIGGER_SECTION_SENTINEL,
    ActionType,
    AutomationRule,
    DueDateRelativeTrigger,
    RuleActionConfig,
    TriggerType,
    is_scheduled_trigger,
)

logger = logging.getLogger(__name__)

_TASK_EVENTS = {EventType.TASK_CREATED, EventType.TASK_UPDATED, EventType.TASK_DELETED}


@dataclass(frozen=True, slots=True)
class RuleAction:
    """A matched rule applied to one entity; the executor interprets it."""

    rule_id: str
    action_type: ActionType
    target_entity_id: str
    params: RuleActionConfig

    @property
    def dedup_key(self) -> str:
        return f"{self.rule_id}:{self.target_entity_id}:{self.action_type.value}"


@dataclass(slots=True)
class EvaluationContext:
    tasks: Sequence[Task]
    sections: Sequence[Section]
    now: datetime
    _tasks_by_id: dict[str, Task] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._tasks_by_id = {task.id: task for task in self.tasks}

    def task(self, task_id: str) -> Task | None:
        return self._tasks_by_id.get(task_id)

    @property
    def filter_context(self) -> FilterContext:
        return FilterContext(now=self.now)


def evaluate_rules(
    event: DomainEvent,
    rules: Sequence[AutomationRule],
    context: EvaluationContext,
) -> list[RuleAction]:
    """Candidate actions for ``event``, in rule-index order.

    Events on subtasks never match. Filters only apply to task entities.
    """
    index = build_rule_index(rules)
    if event.type is EventType.SCHEDULE_FIRED:
        return _evaluate_scheduled(event, index, context)

    task = context.task(event.entity_id) if event.type in _TASK_EVENTS else None
    if task is not None and task.is_subtask:
        return []

    actions: list[RuleAction] = []
    for rule in _match_event_triggers(event, index):
        if event.type in _TASK_EVENTS and rule.filters:
            if task is None or not evaluate_filters(rule.filters, task, context.filter_context):
                logger.debug("Rule %s filtered out for %s", rule.id, event.entity_id)
                continue
        actions.append(_make_action(rule, event.entity_id))
    return actions


def _match_event_triggers(event: DomainEvent, index: RuleIndex) -> list[AutomationRule]:
    changes = event.changes
    previous = event.previous_values
    matched: list[AutomationRule] = []

    if event.type is EventType.TASK_UPDATED:
        if "sectionId" in changes and changes["sectionId"] != previous.get("sectionId"):
            new_section = changes["sectionId"]
            old_section = previous.get("sectionId")
            matched.extend(
                r for r in index.get(TriggerType.CARD_MOVED_INTO_SECTION) if r.trigger.section_id == new_section
            )
            matched.extend(
                r for r in index.get(TriggerType.CARD_MOVED_OUT_OF_SECTION) if r.trigger.section_id == old_section
            )
        if "completed" in changes and changes["completed"] != previous.get("completed"):
            if changes["completed"] is True and previous.get("completed") is False:
                matched.extend(index.get(TriggerType.CARD_MARKED_COMPLETE))
            elif changes["completed"] is False and previous.get("completed") is True:
                matched.extend(index.get(TriggerType.CARD_MARKED_INCOMPLETE))

    elif event.type is EventType.TASK_CREATED:
        section_id = changes.get("sectionId")
        if section_id is not None:
            matched.extend(
                r for r in index.get(TriggerType.CARD_CREATED_IN_SECTION) if r.trigger.section_id == section_id
            )

    elif event.type is EventType.SECTION_CREATED:
        matched.extend(index.get(TriggerType.SECTION_CREATED))

    elif event.type is EventType.SECTION_UPDATED:
        if "name" in changes and changes["name"] != previous.get("name"):
            matched.extend(index.get(TriggerType.SECTION_RENAMED))

    return matched


def _evaluate_scheduled(event: DomainEvent, index: RuleIndex, context: EvaluationContext) -> list[RuleAction]:
    rule = _find_scheduled_rule(index, event.triggered_by_rule)
    if rule is None:
        return []

    if rule.action.type is ActionType.CREATE_CARD:
        section_id = rule.action.section_id
        if section_id == TRIGGER_SECTION_SENTINEL:
            section_id = rule.trigger.section_id
        if not section_id:
            logger.warning("Scheduled rule %s has no section to create a card in", rule.id)
            return []
        return [_make_action(rule, section_id)]

    ctx = context.filter_context
    if isinstance(rule.trigger, DueDateRelativeTrigger):
        task = context.task(event.entity_id)
        if task is None or task.is_subtask or not evaluate_filters(rule.filters, task, ctx):
            return []
        return [_make_action(rule, task.id)]

    return [
        _make_action(rule, task.id)
        for task in context.tasks
        if task.project_id == rule.project_id
        and not task.is_subtask
        and evaluate_filters(rule.filters, task, ctx)
    ]


def _find_scheduled_rule(index: RuleIndex, rule_id: str | None) -> AutomationRule | None:
    if rule_id is None:
        return None
    for trigger_type in (
        TriggerType.SCHEDULED_INTERVAL,
        TriggerType.SCHEDULED_CRON,
        TriggerType.SCHEDULED_DUE_DATE_RELATIVE,
        TriggerType.SCHEDULED_ONE_TIME,
    ):
        for rule in index.get(trigger_type):
            if rule.id == rule_id and is_scheduled_trigger(rule.trigger):
                return rule
    return None


def _make_action(rule: AutomationRule, target_entity_id: str) -> RuleAction:
    return RuleAction(
        rule_id=rule.id,
        action_type=rule.action.type,
        target_entity_id=target_entity_id,
        params=rule.action,
    )
