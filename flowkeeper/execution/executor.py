"""Applies rule actions and keeps each rule's execution bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from flowkeeper.config.models import ExecutionLogConfig
from flowkeeper.domain.models import DomainEvent, EventType
from flowkeeper.evaluation.engine import RuleAction
from flowkeeper.exceptions import FlowkeeperError
from flowkeeper.execution.handlers import ActionContext, get_action_handler
from flowkeeper.execution.undo import UndoService, UndoSnapshot
from flowkeeper.rules.models import AutomationRule, ExecutionLogEntry, ExecutionType, TriggerType
from flowkeeper.rules.repository import RuleRepository
from flowkeeper.scheduling.descriptions import describe_schedule

logger = logging.getLogger(__name__)

_FIXED_TRIGGER_DESCRIPTIONS = {
    TriggerType.CARD_MARKED_COMPLETE.value: "Card marked complete",
    TriggerType.CARD_MARKED_INCOMPLETE.value: "Card marked incomplete",
    TriggerType.SECTION_CREATED.value: "Section created",
    TriggerType.SECTION_RENAMED.value: "Section renamed",
}


@dataclass(frozen=True, slots=True)
class AppliedAction:
    action: RuleAction
    rule_name: str
    task_name: str
    events: tuple[DomainEvent, ...]


@dataclass(slots=True)
class _ScheduledAggregate:
    rule: AutomationRule
    action_description: str
    task_names: list[str] = field(default_factory=list)


class RuleExecutor:
    """Runs handlers for matched actions.

    Event-driven runs get one log entry per action. Scheduled runs get one
    aggregated entry per rule carrying the match count and the first few task
    names.
    """

    def __init__(
        self,
        rule_repo: RuleRepository,
        ctx: ActionContext,
        undo: UndoService | None = None,
        log_config: ExecutionLogConfig | None = None,
    ) -> None:
        self._rule_repo = rule_repo
        self._ctx = ctx
        self._undo = undo
        self._log_config = log_config or ExecutionLogConfig()

    def execute_actions(
        self,
        actions: Sequence[RuleAction],
        event: DomainEvent,
        *,
        execution_type: ExecutionType | None = None,
        capture_undo: bool = False,
    ) -> list[AppliedAction]:
        scheduled = event.type is EventType.SCHEDULE_FIRED
        if scheduled and execution_type is None:
            execution_type = ExecutionType.SCHEDULED
        aggregates: dict[str, _ScheduledAggregate] = {}
        applied: list[AppliedAction] = []

        for action in actions:
            rule = self._rule_repo.find_by_id(action.rule_id)
            if rule is None:
                logger.warning("Skipping action for deleted rule %s", action.rule_id)
                continue
            result = self._execute_one(rule, action, event, capture_undo)
            if result is None:
                continue
            applied.append(result)
            self._record_execution(rule)
            handler = get_action_handler(action.action_type)
            if scheduled:
                aggregate = aggregates.get(rule.id)
                if aggregate is None:
                    aggregate = aggregates[rule.id] = _ScheduledAggregate(
                        rule, handler.describe(action.params, self._ctx)
                    )
                aggregate.task_names.append(result.task_name)
            else:
                self._append_log(
                    rule.id,
                    ExecutionLogEntry(
                        timestamp=self._ctx.clock.now(),
                        trigger_description=self.describe_trigger(rule),
                        action_description=handler.describe(action.params, self._ctx),
                        task_name=result.task_name,
                        execution_type=execution_type,
                    ),
                )

        for aggregate in aggregates.values():
            names = aggregate.task_names
            self._append_log(
                aggregate.rule.id,
                ExecutionLogEntry(
                    timestamp=self._ctx.clock.now(),
                    trigger_description=self.describe_trigger(aggregate.rule),
                    action_description=aggregate.action_description,
                    task_name=names[0] if len(names) == 1 else f"{len(names)} tasks",
                    match_count=len(names),
                    details=names[: self._log_config.max_details],
                    execution_type=execution_type,
                ),
            )
        return applied

    def _execute_one(
        self,
        rule: AutomationRule,
        action: RuleAction,
        event: DomainEvent,
        capture_undo: bool,
    ) -> AppliedAction | None:
        handler = get_action_handler(action.action_type)
        snapshot: UndoSnapshot | None = None
        try:
            if capture_undo and self._undo is not None:
                captured = handler.capture(action, self._ctx)
                snapshot = UndoSnapshot(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    action_type=action.action_type,
                    target_entity_id=action.target_entity_id,
                    previous_state=captured.previous_state,
                    subtask_snapshots=captured.subtask_snapshots,
                    captured_at=self._ctx.clock.now(),
                )
            events = handler.execute(action, event, self._ctx)
        except FlowkeeperError as exc:
            logger.warning("Action %s for rule %s skipped: %s", action.action_type.value, rule.id, exc)
            return None
        except Exception:
            logger.exception("Action %s for rule %s failed", action.action_type.value, rule.id)
            return None
        if not events:
            return None

        created = next((e for e in events if e.type is EventType.TASK_CREATED), None)
        if snapshot is not None and self._undo is not None:
            self._undo.capture(snapshot.with_created_entity(created.entity_id) if created else snapshot)
        return AppliedAction(action, rule.name, self._task_name(action, created), tuple(events))

    def _task_name(self, action: RuleAction, created: DomainEvent | None) -> str:
        if created is not None:
            task = self._ctx.task_repo.find_by_id(created.entity_id)
            return task.description if task is not None else action.params.card_title or "New card"
        task = self._ctx.task_repo.find_by_id(action.target_entity_id)
        return task.description if task is not None else "Unknown task"

    def _record_execution(self, rule: AutomationRule) -> None:
        current = self._rule_repo.find_by_id(rule.id)
        if current is None:
            return
        self._rule_repo.update(
            rule.id,
            execution_count=current.execution_count + 1,
            last_executed_at=self._ctx.clock.now(),
        )

    def _append_log(self, rule_id: str, entry: ExecutionLogEntry) -> None:
        current = self._rule_repo.find_by_id(rule_id)
        if current is None:
            return
        self._rule_repo.update(
            rule_id,
            recent_executions=current.with_log_entry(entry, self._log_config.max_entries),
        )

    def describe_trigger(self, rule: AutomationRule) -> str:
        trigger = rule.trigger
        section = None
        if trigger.section_id:
            found = self._ctx.section_repo.find_by_id(trigger.section_id)
            section = found.name if found is not None else "unknown section"
        trigger_type = trigger.type
        if trigger_type == TriggerType.CARD_MOVED_INTO_SECTION:
            return f"Card moved into '{section}'" if section else "Card moved into section"
        if trigger_type == TriggerType.CARD_MOVED_OUT_OF_SECTION:
            return f"Card moved out of '{section}'" if section else "Card moved out of section"
        if trigger_type == TriggerType.CARD_CREATED_IN_SECTION:
            return f"Card created in '{section}'" if section else "Card created in section"
        if trigger_type in _FIXED_TRIGGER_DESCRIPTIONS:
            return _FIXED_TRIGGER_DESCRIPTIONS[trigger_type]
        if trigger_type == TriggerType.SCHEDULED_ONE_TIME:
            return describe_schedule(trigger)
        if rule.is_scheduled:
            return f"Every {describe_schedule(trigger)}"
        return "Unknown trigger"
