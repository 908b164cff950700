"""Action handlers: turn a matched rule action into task-store mutations.

Every handler returns the domain events its mutation produced, one cascade
generation deeper than the triggering event, so the service can feed them back
into evaluation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone, tzinfo
from typing import Any, Callable, Protocol

from flowkeeper.clock import Clock
from flowkeeper.config.models import DedupConfig
from flowkeeper.domain.models import DomainEvent, EventType, Task
from flowkeeper.domain.repositories import SectionRepository, TaskRepository
from flowkeeper.domain.tasks import TaskService
from flowkeeper.evaluation.dates import calculate_relative_date
from flowkeeper.evaluation.engine import RuleAction
from flowkeeper.execution.dedup import get_lookback_window, is_duplicate_card
from flowkeeper.execution.titles import interpolate_title
from flowkeeper.exceptions import EntityNotFoundError, UnknownActionTypeError
from flowkeeper.rules.models import TRIGGER_SECTION_SENTINEL, ActionType, RuleActionConfig
from flowkeeper.rules.repository import RuleRepository

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class ActionContext:
    task_repo: TaskRepository
    section_repo: SectionRepository
    task_service: TaskService
    clock: Clock
    rule_repo: RuleRepository | None = None
    tz: tzinfo = timezone.utc
    dedup: DedupConfig = field(default_factory=DedupConfig)
    id_factory: Callable[[], str] = new_id

    def local_now(self) -> datetime:
        return self.clock.now().astimezone(self.tz)

    def section_name(self, section_id: str | None) -> str:
        section = self.section_repo.find_by_id(section_id) if section_id else None
        return section.name if section is not None else "Unknown section"

    def start_of_day(self, params: RuleActionConfig, option: str) -> datetime:
        day = calculate_relative_date(
            option,
            self.local_now().date(),
            specific_month=params.specific_month,
            specific_day=params.specific_day,
            month_target=params.month_target,
        )
        return datetime.combine(day, time(), tzinfo=self.tz).astimezone(timezone.utc)


@dataclass(slots=True)
class CapturedState:
    previous_state: dict[str, Any]
    subtask_snapshots: dict[str, dict[str, Any]] = field(default_factory=dict)


class ActionHandler(Protocol):
    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]: ...

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str: ...

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState: ...


def _require_task(ctx: ActionContext, task_id: str) -> Task:
    task = ctx.task_repo.find_by_id(task_id)
    if task is None:
        raise EntityNotFoundError("task", task_id)
    return task


def _updated_event(
    task: Task,
    action: RuleAction,
    event: DomainEvent,
    changes: dict[str, Any],
    previous: dict[str, Any],
) -> DomainEvent:
    return DomainEvent(
        type=EventType.TASK_UPDATED,
        entity_id=task.id,
        project_id=task.project_id,
        changes=changes,
        previous_values=previous,
        depth=event.depth + 1,
        triggered_by_rule=action.rule_id,
    )


class MoveCardHandler:
    def __init__(self, position: str) -> None:
        self._position = position

    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]:
        task = _require_task(ctx, action.target_entity_id)
        section_id = action.params.section_id
        if section_id is None or ctx.section_repo.find_by_id(section_id) is None:
            raise EntityNotFoundError("section", section_id or "")
        orders = [t.order for t in ctx.task_repo.find_by_section_id(section_id) if t.id != task.id]
        if self._position == "top":
            order = min(orders) - 1 if orders else -1
        else:
            order = max(orders) + 1 if orders else 1
        now = ctx.clock.now()
        changes: dict[str, Any] = {"section_id": section_id, "order": order, "updated_at": now}
        if task.section_id != section_id:
            changes["moved_to_section_at"] = now
        ctx.task_repo.update(task.id, **changes)
        return [
            _updated_event(
                task,
                action,
                event,
                {"sectionId": section_id, "order": order},
                {"sectionId": task.section_id, "order": task.order},
            )
        ]

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str:
        return f"Moved to {self._position} of '{ctx.section_name(params.section_id)}'"

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState:
        task = _require_task(ctx, action.target_entity_id)
        return CapturedState(
            {
                "section_id": task.section_id,
                "order": task.order,
                "moved_to_section_at": task.moved_to_section_at,
            }
        )


class MarkCompletionHandler:
    def __init__(self, completed: bool) -> None:
        self._completed = completed

    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]:
        task = _require_task(ctx, action.target_entity_id)
        if task.completed == self._completed:
            return []
        return ctx.task_service.cascade_complete(
            task.id,
            self._completed,
            depth=event.depth + 1,
            triggered_by_rule=action.rule_id,
        )

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str:
        return "Marked as complete" if self._completed else "Marked as incomplete"

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState:
        task = _require_task(ctx, action.target_entity_id)
        subtasks: dict[str, dict[str, Any]] = {}
        if self._completed:
            subtasks = {
                child.id: {"completed": child.completed, "completed_at": child.completed_at}
                for child in ctx.task_service.collect_descendants(task.id)
            }
        return CapturedState({"completed": task.completed, "completed_at": task.completed_at}, subtasks)


class SetDueDateHandler:
    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]:
        task = _require_task(ctx, action.target_entity_id)
        option = action.params.date_option or "today"
        due = ctx.start_of_day(action.params, option)
        ctx.task_repo.update(task.id, due_date=due, updated_at=ctx.clock.now())
        return [_updated_event(task, action, event, {"dueDate": due}, {"dueDate": task.due_date})]

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str:
        return "Set due date"

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState:
        return CapturedState({"due_date": _require_task(ctx, action.target_entity_id).due_date})


class RemoveDueDateHandler:
    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]:
        task = _require_task(ctx, action.target_entity_id)
        if task.due_date is None:
            return []
        ctx.task_repo.update(task.id, due_date=None, updated_at=ctx.clock.now())
        return [_updated_event(task, action, event, {"dueDate": None}, {"dueDate": task.due_date})]

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str:
        return "Removed due date"

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState:
        return CapturedState({"due_date": _require_task(ctx, action.target_entity_id).due_date})


class CreateCardHandler:
    def execute(self, action: RuleAction, event: DomainEvent, ctx: ActionContext) -> list[DomainEvent]:
        section_id = self.resolve_section_id(action, event, ctx)
        section = ctx.section_repo.find_by_id(section_id) if section_id else None
        if section is None:
            raise EntityNotFoundError("section", section_id or "")
        template = action.params.card_title or ""
        if not template.strip():
            return []

        local_now = ctx.local_now()
        title = interpolate_title(template, local_now)
        now = ctx.clock.now()
        in_section = ctx.task_repo.find_by_section_id(section.id)
        if event.type is EventType.SCHEDULE_FIRED:
            rule = ctx.rule_repo.find_by_id(action.rule_id) if ctx.rule_repo is not None else None
            if is_duplicate_card(title, section.id, in_section, now, get_lookback_window(rule, ctx.dedup)):
                logger.info("Skipping duplicate card '%s' in section %s", title, section.id)
                return []

        due = None
        if action.params.card_date_option:
            due = ctx.start_of_day(action.params, action.params.card_date_option)
        task = Task(
            id=ctx.id_factory(),
            project_id=section.project_id,
            description=title,
            section_id=section.id,
            due_date=due,
            order=max((t.order for t in in_section), default=0) + 1,
            created_at=now,
            updated_at=now,
            moved_to_section_at=now,
        )
        ctx.task_repo.create(task)
        return [
            DomainEvent(
                type=EventType.TASK_CREATED,
                entity_id=task.id,
                project_id=task.project_id,
                changes={"sectionId": section.id},
                depth=event.depth + 1,
                triggered_by_rule=action.rule_id,
            )
        ]

    @staticmethod
    def resolve_section_id(action: RuleAction, event: DomainEvent, ctx: ActionContext) -> str | None:
        section_id = action.params.section_id
        if section_id != TRIGGER_SECTION_SENTINEL:
            return section_id
        if event.type in (EventType.SECTION_CREATED, EventType.SECTION_UPDATED):
            return event.entity_id
        if event.type is EventType.SCHEDULE_FIRED:
            return action.target_entity_id
        task = ctx.task_repo.find_by_id(event.entity_id)
        return task.section_id if task is not None else None

    def describe(self, params: RuleActionConfig, ctx: ActionContext) -> str:
        return f"Created card '{params.card_title}'"

    def capture(self, action: RuleAction, ctx: ActionContext) -> CapturedState:
        return CapturedState({})


ACTION_HANDLERS: dict[ActionType, ActionHandler] = {
    ActionType.MOVE_CARD_TO_TOP_OF_SECTION: MoveCardHandler("top"),
    ActionType.MOVE_CARD_TO_BOTTOM_OF_SECTION: MoveCardHandler("bottom"),
    ActionType.MARK_CARD_COMPLETE: MarkCompletionHandler(True),
    ActionType.MARK_CARD_INCOMPLETE: MarkCompletionHandler(False),
    ActionType.SET_DUE_DATE: SetDueDateHandler(),
    ActionType.REMOVE_DUE_DATE: RemoveDueDateHandler(),
    ActionType.CREATE_CARD: CreateCardHandler(),
}


def get_action_handler(action_type: ActionType | str) -> ActionHandler:
    try:
        return ACTION_HANDLERS[ActionType(action_type)]
    except (KeyError, ValueError):
        raise UnknownActionTypeError(str(action_type)) from None
