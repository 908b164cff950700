"""Unit tests for rule action handlers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

import pytest

from flowkeeper.domain.models import DomainEvent, EventType, Task
from flowkeeper.evaluation.engine import RuleAction
from flowkeeper.exceptions import EntityNotFoundError, UnknownActionTypeError
from flowkeeper.execution.handlers import ActionContext, CreateCardHandler, get_action_handler
from flowkeeper.rules.models import ActionType, AutomationRule, RuleActionConfig

if TYPE_CHECKING:
    from conftest import Board


@pytest.fixture
def ctx(board: Board) -> ActionContext:
    ids = iter(f"card-{n}" for n in range(1, 100))
    return ActionContext(
        task_repo=board.tasks,
        section_repo=board.sections,
        task_service=board.service.task_service,
        clock=board.clock,
        rule_repo=board.rules,
        id_factory=lambda: next(ids),
    )


def _action(action_type: ActionType, target: str, **params: object) -> RuleAction:
    return RuleAction(
        rule_id="r1",
        action_type=action_type,
        target_entity_id=target,
        params=RuleActionConfig(type=action_type, **params),
    )


def _event(event_type: EventType = EventType.TASK_UPDATED, entity_id: str = "a", depth: int = 0) -> DomainEvent:
    return DomainEvent(type=event_type, entity_id=entity_id, project_id="p1", depth=depth)


def test_move_to_top_and_bottom(board: Board, ctx: ActionContext, make_task: Callable[..., Task]) -> None:
    board.tasks.create(make_task("a", section_id="todo"))
    board.tasks.create(make_task("b", section_id="done", order=5))
    board.tasks.create(make_task("c", section_id="done", order=2))

    top = _action(ActionType.MOVE_CARD_TO_TOP_OF_SECTION, "a", section_id="done")
    events = get_action_handler(top.action_type).execute(top, _event(depth=1), ctx)

    moved = board.tasks.find_by_id("a")
    assert moved is not None
    assert (moved.section_id, moved.order) == ("done", 1)
    assert moved.moved_to_section_at == board.clock.now()
    assert len(events) == 1
    assert events[0].changes == {"sectionId": "done", "order": 1}
    assert events[0].previous_values["sectionId"] == "todo"
    assert events[0].depth == 2
    assert events[0].triggered_by_rule == "r1"

    bottom = _action(ActionType.MOVE_CARD_TO_BOTTOM_OF_SECTION, "a", section_id="done")
    get_action_handler(bottom.action_type).execute(bottom, _event(), ctx)
    assert board.tasks.find_by_id("a").order == 6  # type: ignore[union-attr]


def test_move_into_missing_section_raises(board: Board, ctx: ActionContext, make_task: Callable[..., Task]) -> None:
    board.tasks.create(make_task("a", section_id="todo"))
    action = _action(ActionType.MOVE_CARD_TO_TOP_OF_SECTION, "a", section_id="gone")
    with pytest.raises(EntityNotFoundError):
        get_action_handler(action.action_type).execute(action, _event(), ctx)


def test_mark_complete_cascades_and_is_noop_when_already_done(
    board: Board, ctx: ActionContext, make_task: Callable[..., Task]
) -> None:
    board.tasks.create(make_task("a", section_id="todo"))
    board.tasks.create(make_task("a1", parent_task_id="a"))
    board.tasks.create(make_task("a2", parent_task_id="a"))
    action = _action(ActionType.MARK_CARD_COMPLETE, "a")
    handler = get_action_handler(action.action_type)

    captured = handler.capture(action, ctx)
    assert captured.previous_state == {"completed": False, "completed_at": None}
    assert set(captured.subtask_snapshots) == {"a1", "a2"}

    events = handler.execute(action, _event(), ctx)
    assert [e.entity_id for e in events] == ["a", "a1", "a2"]
    assert [e.depth for e in events] == [1, 2, 2]
    assert handler.execute(action, _event(), ctx) == []


def test_set_due_date_uses_local_midnight(board: Board, ctx: ActionContext, make_task: Callable[..., Task]) -> None:
    board.tasks.create(make_task("a"))
    action = _action(ActionType.SET_DUE_DATE, "a", date_option="tomorrow")
    get_action_handler(action.action_type).execute(action, _event(), ctx)
    assert board.tasks.find_by_id("a").due_date == datetime(2026, 1, 6, tzinfo=timezone.utc)  # type: ignore[union-attr]

    ctx.tz = ZoneInfo("America/New_York")
    get_action_handler(action.action_type).execute(action, _event(), ctx)
    assert board.tasks.find_by_id("a").due_date == datetime(2026, 1, 6, 5, 0, tzinfo=timezone.utc)  # type: ignore[union-attr]


def test_remove_due_date(board: Board, ctx: ActionContext, make_task: Callable[..., Task]) -> None:
    board.tasks.create(make_task("a", due_date=board.clock.now()))
    board.tasks.create(make_task("b"))
    handler = get_action_handler(ActionType.REMOVE_DUE_DATE)
    events = handler.execute(_action(ActionType.REMOVE_DUE_DATE, "a"), _event(), ctx)
    assert events[0].changes == {"dueDate": None}
    assert board.tasks.find_by_id("a").due_date is None  # type: ignore[union-attr]
    assert handler.execute(_action(ActionType.REMOVE_DUE_DATE, "b"), _event(entity_id="b"), ctx) == []


def test_create_card_interpolates_title(board: Board, ctx: ActionContext, make_task: Callable[..., Task]) -> None:
    board.tasks.create(make_task("a", section_id="todo", order=3))
    action = _action(
        ActionType.CREATE_CARD,
        "a",
        section_id="todo",
        card_title="Standup {{date}}",
        card_date_option="today",
    )
    events = get_action_handler(action.action_type).execute(action, _event(EventType.TASK_CREATED), ctx)

    assert [e.type for e in events] == [EventType.TASK_CREATED]
    card = board.tasks.find_by_id("card-1")
    assert card is not None
    assert card.description == "Standup 2026-01-05"
    assert card.order == 4
    assert card.due_date == datetime(2026, 1, 5, tzinfo=timezone.utc)


def test_create_card_in_trigger_section(board: Board, ctx: ActionContext) -> None:
    action = _action(ActionType.CREATE_CARD, "doing", section_id="__trigger_section__", card_title="Intro")
    event = _event(EventType.SECTION_CREATED, entity_id="doing")
    assert CreateCardHandler.resolve_section_id(action, event, ctx) == "doing"
    get_action_handler(action.action_type).execute(action, event, ctx)
    assert board.tasks.find_by_id("card-1").section_id == "doing"  # type: ignore[union-attr]


def test_create_card_skips_recent_duplicate_on_schedule(
    board: Board,
    ctx: ActionContext,
    make_task: Callable[..., Task],
    make_rule: Callable[..., AutomationRule],
) -> None:
    board.rules.create(
        make_rule(
            "r1",
            {"type": "scheduled_cron", "schedule": {"hour": 9, "minute": 0}},
            {"type": "create_card", "sectionId": "todo", "cardTitle": "Weekly report"},
        )
    )
    board.tasks.create(make_task("old", description="Weekly report", section_id="todo"))
    action = _action(ActionType.CREATE_CARD, "todo", section_id="todo", card_title="Weekly report")
    handler = get_action_handler(action.action_type)

    assert handler.execute(action, _event(EventType.SCHEDULE_FIRED, entity_id="r1"), ctx) == []
    assert len(handler.execute(action, _event(EventType.TASK_UPDATED), ctx)) == 1

    board.clock.advance(timedelta(minutes=5))
    assert handler.execute(action, _event(EventType.SCHEDULE_FIRED, entity_id="r1"), ctx) == []
    board.clock.advance(timedelta(days=1))
    assert len(handler.execute(action, _event(EventType.SCHEDULE_FIRED, entity_id="r1"), ctx)) == 1


def test_describe(ctx: ActionContext) -> None:
    move = RuleActionConfig(type=ActionType.MOVE_CARD_TO_TOP_OF_SECTION, section_id="done")
    assert get_action_handler(move.type).describe(move, ctx) == "Moved to top of 'Done'"
    gone = RuleActionConfig(type=ActionType.MOVE_CARD_TO_BOTTOM_OF_SECTION, section_id="gone")
    assert get_action_handler(gone.type).describe(gone, ctx) == "Moved to bottom of 'Unknown section'"
    create = RuleActionConfig(type=ActionType.CREATE_CARD, section_id="todo", card_title="Retro")
    assert get_action_handler(create.type).describe(create, ctx) == "Created card 'Retro'"
    assert get_action_handler("mark_card_incomplete").describe(create, ctx) == "Marked as incomplete"


def test_unknown_action_type() -> None:
    with pytest.raises(UnknownActionTypeError):
        get_action_handler("archive_card")
