"""Preview of what a scheduled rule would do if it fired now.

Nothing here touches a repository: tasks and sections come in as plain
sequences and the result only names the entities that would be acted on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Sequence

from flowkeeper.domain.models import DomainEvent, EventType, Section, Task
from flowkeeper.evaluation.engine import EvaluationContext, RuleAction, evaluate_rules
from flowkeeper.rules.models import ActionType, AutomationRule, DueDateRelativeTrigger, is_scheduled_trigger
from flowkeeper.scheduling.evaluator import DEFAULT_FIRST_LOOKBACK, evaluate_due_date_relative

ACTION_LABELS: dict[ActionType, str] = {
    ActionType.MOVE_CARD_TO_TOP_OF_SECTION: "move to top of section",
    ActionType.MOVE_CARD_TO_BOTTOM_OF_SECTION: "move to bottom of section",
    ActionType.MARK_CARD_COMPLETE: "mark as complete",
    ActionType.MARK_CARD_INCOMPLETE: "mark as incomplete",
    ActionType.SET_DUE_DATE: "set due date",
    ActionType.REMOVE_DUE_DATE: "remove due date",
    ActionType.CREATE_CARD: "create new card",
}


@dataclass(frozen=True, slots=True)
class DryRunMatch:
    id: str
    name: str


@dataclass(slots=True)
class DryRunResult:
    matching_tasks: list[DryRunMatch] = field(default_factory=list)
    action_description: str = ""

    @property
    def total_count(self) -> int:
        return len(self.matching_tasks)


def dry_run_scheduled_rule(
    rule: AutomationRule,
    now: datetime,
    tasks: Sequence[Task],
    sections: Sequence[Section],
    *,
    tz: tzinfo = timezone.utc,
    first_lookback: timedelta = DEFAULT_FIRST_LOOKBACK,
) -> DryRunResult:
    """Tasks ``rule`` would act on at ``now``. Disabled, broken and event rules preview nothing."""
    if not rule.is_active or not is_scheduled_trigger(rule.trigger):
        return DryRunResult()

    context = EvaluationContext(tasks=tasks, sections=sections, now=now.astimezone(tz))
    actions: list[RuleAction] = []
    for event in _synthetic_events(rule, now, tasks, first_lookback):
        actions.extend(evaluate_rules(event, [rule], context))

    names = {task.id: task.description for task in tasks}
    matches = []
    for action in actions:
        if action.action_type is ActionType.CREATE_CARD:
            title = action.params.card_title or "New card"
            matches.append(DryRunMatch(action.target_entity_id, f"📝 {title}"))
        else:
            matches.append(DryRunMatch(action.target_entity_id, names.get(action.target_entity_id, "Unknown task")))
    return DryRunResult(matches, ACTION_LABELS.get(rule.action.type, rule.action.type.value))


def _synthetic_events(
    rule: AutomationRule,
    now: datetime,
    tasks: Sequence[Task],
    first_lookback: timedelta,
) -> list[DomainEvent]:
    if isinstance(rule.trigger, DueDateRelativeTrigger):
        project_tasks = [task for task in tasks if task.project_id == rule.project_id]
        evaluation = evaluate_due_date_relative(
            now,
            rule.trigger.last_evaluated_at,
            rule.trigger.schedule.offset_minutes,
            project_tasks,
            first_lookback,
        )
        entity_ids: Sequence[str] = evaluation.matching_task_ids or ()
    else:
        entity_ids = (rule.id,)
    return [
        DomainEvent(
            type=EventType.SCHEDULE_FIRED,
            entity_id=entity_id,
            project_id=rule.project_id,
            changes={"triggerType": rule.trigger.type},
            triggered_by_rule=rule.id,
        )
        for entity_id in entity_ids
    ]
