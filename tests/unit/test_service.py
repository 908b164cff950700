"""Unit tests for AutomationService cascade handling."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from flowkeeper.clock import FakeClock
from flowkeeper.config.models import EngineConfig, FlowkeeperConfig, SchedulerConfig
from flowkeeper.domain.events import DomainEventBus
from flowkeeper.domain.models import DomainEvent, EventType, Section, Task
from flowkeeper.domain.repositories import InMemorySectionRepository, InMemoryTaskRepository
from flowkeeper.execution.notifications import CollectingSink, ExecutionSummary
from flowkeeper.rules.models import AutomationRule, ExecutionType
from flowkeeper.rules.repository import InMemoryRuleRepository
from flowkeeper.scheduling.evaluator import ScheduleEvaluation
from flowkeeper.scheduling.scheduler import TickSummary
from flowkeeper.service import AutomationService

if TYPE_CHECKING:
    from conftest import Board


def _into(section_id: str) -> dict[str, str]:
    return {"type": "card_moved_into_section", "sectionId": section_id}


def _move_to(section_id: str) -> dict[str, str]:
    return {"type": "move_card_to_bottom_of_section", "sectionId": section_id}


def _user_move(board: Board, task_id: str, section_id: str) -> DomainEvent:
    previous = board.tasks.find_by_id(task_id)
    assert previous is not None
    board.tasks.update(task_id, section_id=section_id)
    return DomainEvent(
        type=EventType.TASK_UPDATED,
        entity_id=task_id,
        project_id="p1",
        changes={"sectionId": section_id},
        previous_values={"sectionId": previous.section_id},
    )


def test_cascade_follows_produced_events(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("to-done", _into("doing"), _move_to("done")))
    board.rules.create(make_rule("complete", _into("done"), {"type": "mark_card_complete"}))
    board.tasks.create(make_task("a", section_id="todo"))

    summary = board.service.handle_event(_user_move(board, "a", "doing"))

    task = board.tasks.find_by_id("a")
    assert task is not None
    assert task.section_id == "done"
    assert task.completed is True
    assert summary is not None
    assert list(summary.runs) == ["to-done", "complete"]
    assert summary.truncated is False
    assert summary.undo_available is True
    assert board.sink.summaries == [summary]


def test_undo_reverts_the_top_level_action(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("to-done", _into("doing"), _move_to("done")))
    board.tasks.create(make_task("a", section_id="todo"))
    board.service.handle_event(_user_move(board, "a", "doing"))

    assert board.service.undo_last() is True
    assert board.tasks.find_by_id("a").section_id == "doing"  # type: ignore[union-attr]
    assert board.service.undo_last() is False


def test_undo_restores_cascaded_subtasks(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("complete", _into("done"), {"type": "mark_card_complete"}))
    board.tasks.create(make_task("parent", section_id="todo"))
    for n in range(3):
        board.tasks.create(make_task(f"child-{n}", parent_task_id="parent"))

    board.service.handle_event(_user_move(board, "parent", "done"))
    assert all(t.completed for t in board.tasks.find_all())
    snapshot = board.service.undo.get()
    assert snapshot is not None
    assert len(snapshot.subtask_snapshots) == 3

    assert board.service.undo_last() is True
    assert not any(t.completed for t in board.tasks.find_all())


def test_dedup_breaks_ping_pong(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("ping", _into("todo"), _move_to("doing")))
    board.rules.create(make_rule("pong", _into("doing"), _move_to("todo")))
    board.tasks.create(make_task("a", section_id="done"))

    summary = board.service.handle_event(_user_move(board, "a", "todo"))

    assert summary is not None
    assert {rule_id: run.batch_size for rule_id, run in summary.runs.items()} == {"ping": 1, "pong": 1}
    assert board.tasks.find_by_id("a").section_id == "todo"  # type: ignore[union-attr]
    assert board.rules.find_by_id("ping").execution_count == 1  # type: ignore[union-attr]


def test_cascade_stops_at_configured_depth(
    clock: FakeClock, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    sections = InMemorySectionRepository(
        [Section("todo", "p1", "To Do"), Section("doing", "p1", "Doing"), Section("done", "p1", "Done")]
    )
    tasks = InMemoryTaskRepository([make_task("a", section_id="done")])
    rules = InMemoryRuleRepository(
        [
            make_rule("r1", _into("todo"), _move_to("doing")),
            make_rule("r2", _into("doing"), _move_to("done")),
            make_rule("r3", _into("done"), {"type": "mark_card_complete"}),
        ]
    )
    service = AutomationService(
        tasks,
        sections,
        rules,
        clock=clock,
        config=FlowkeeperConfig(engine=EngineConfig(max_cascade_depth=2)),
    )
    tasks.update("a", section_id="todo")
    event = DomainEvent(
        type=EventType.TASK_UPDATED,
        entity_id="a",
        project_id="p1",
        changes={"sectionId": "todo"},
        previous_values={"sectionId": "done"},
    )

    summary = service.handle_event(event)

    assert summary is not None
    assert summary.truncated is True
    assert list(summary.runs) == ["r1", "r2"]
    task = tasks.find_by_id("a")
    assert task is not None
    assert task.section_id == "done"
    assert task.completed is False
    assert service.handle_event(DomainEvent(EventType.TASK_UPDATED, "a", "p1", depth=2)) is None


def test_default_depth_stops_a_long_chain_after_five_actions(
    clock: FakeClock,
    make_rule: Callable[..., AutomationRule],
    make_task: Callable[..., Task],
    caplog: pytest.LogCaptureFixture,
) -> None:
    sections = InMemorySectionRepository([Section(f"s{n}", "p1", f"Stage {n}", n) for n in range(8)])
    tasks = InMemoryTaskRepository([make_task("a", section_id="s0")])
    rules = InMemoryRuleRepository(
        [make_rule(f"r{n}", _into(f"s{n}"), _move_to(f"s{n + 1}"), order=n) for n in range(1, 7)]
    )
    sink = CollectingSink()
    service = AutomationService(tasks, sections, rules, clock=clock, sink=sink, config=FlowkeeperConfig())
    tasks.update("a", section_id="s1")
    event = DomainEvent(
        EventType.TASK_UPDATED, "a", "p1", changes={"sectionId": "s1"}, previous_values={"sectionId": "s0"}
    )

    with caplog.at_level(logging.DEBUG, logger="flowkeeper"):
        summary = service.handle_event(event)

    assert summary is not None
    assert summary.truncated is True
    assert summary.action_count == 5
    assert list(summary.runs) == ["r1", "r2", "r3", "r4", "r5"]
    assert tasks.find_by_id("a").section_id == "s6"  # type: ignore[union-attr]
    assert not [record for record in caplog.records if record.levelno >= logging.WARNING]
    assert len(sink.summaries) == 1


def test_filters_use_the_configured_zone(
    make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    # 21:00 on Jan 5 in New York, already Jan 6 in UTC.
    clock = FakeClock(datetime(2026, 1, 6, 2, 0, tzinfo=timezone.utc))
    sections = InMemorySectionRepository([Section("todo", "p1", "To Do"), Section("done", "p1", "Done", 1)])
    local_midnight = datetime(2026, 1, 5, 5, 0, tzinfo=timezone.utc)
    tasks = InMemoryTaskRepository([make_task("a", section_id="todo", due_date=local_midnight)])
    rules = InMemoryRuleRepository(
        [make_rule("r1", _into("done"), {"type": "mark_card_complete"}, filters=[{"type": "due_today"}])]
    )
    config = FlowkeeperConfig(scheduler=SchedulerConfig(timezone="America/New_York"))
    service = AutomationService(tasks, sections, rules, clock=clock, config=config)
    tasks.update("a", section_id="done")
    event = DomainEvent(
        EventType.TASK_UPDATED, "a", "p1", changes={"sectionId": "done"}, previous_values={"sectionId": "todo"}
    )

    service.handle_event(event)

    assert tasks.find_by_id("a").completed is True  # type: ignore[union-attr]


def test_joined_chain_does_not_notify(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("to-done", _into("doing"), _move_to("done")))
    board.tasks.create(make_task("a", section_id="todo"))
    dedup: set[str] = set()

    joined = board.service.handle_event(_user_move(board, "a", "doing"), dedup)
    assert joined is not None
    assert joined.action_count == 1
    assert dedup == {"to-done:a:move_card_to_bottom_of_section"}
    assert board.sink.summaries == []


def test_subscribe_ignores_engine_events(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    board.rules.create(make_rule("clear-due", {"type": "card_marked_incomplete"}, {"type": "remove_due_date"}))
    board.tasks.create(make_task("a", due_date=board.clock.now()))
    bus = DomainEventBus()
    unsubscribe = board.service.subscribe(bus)
    change = {"changes": {"completed": False}, "previous_values": {"completed": True}}

    bus.emit(DomainEvent(EventType.TASK_UPDATED, "a", "p1", triggered_by_rule="other", **change))
    assert board.tasks.find_by_id("a").due_date is not None  # type: ignore[union-attr]

    bus.emit(DomainEvent(EventType.TASK_UPDATED, "a", "p1", **change))
    assert board.tasks.find_by_id("a").due_date is None  # type: ignore[union-attr]
    unsubscribe()
    assert bus.listener_count == 0


def test_scheduled_fire_creates_card_once(board: Board, make_rule: Callable[..., AutomationRule]) -> None:
    rule = board.rules.create(
        make_rule(
            "daily",
            {"type": "scheduled_interval", "schedule": {"intervalMinutes": 60}},
            {"type": "create_card", "sectionId": "todo", "cardTitle": "Daily {{date}}"},
        )
    )
    evaluation = ScheduleEvaluation(True, board.clock.now(), missed_count=1)

    first = board.service.handle_scheduled_fire(rule, evaluation)
    second = board.service.handle_scheduled_fire(rule, evaluation)

    assert first.action_count == 1
    assert first.execution_type is ExecutionType.SCHEDULED
    assert second.action_count == 0
    card = board.tasks.find_by_id("new-1")
    assert card is not None
    assert card.description == "Daily 2026-01-05"
    assert board.sink.summaries == []


def test_scheduled_fire_batches_matching_tasks(
    board: Board, make_rule: Callable[..., AutomationRule], make_task: Callable[..., Task]
) -> None:
    rule = board.rules.create(
        make_rule(
            "sweep",
            {"type": "scheduled_interval", "schedule": {"intervalMinutes": 60}},
            {"type": "mark_card_complete"},
            filters=[{"type": "in_section", "sectionId": "doing"}],
        )
    )
    board.tasks.create(make_task("a", section_id="doing"))
    board.tasks.create(make_task("b", section_id="doing"))
    board.tasks.create(make_task("c", section_id="todo"))

    summary = board.service.handle_scheduled_fire(
        rule, ScheduleEvaluation(True, board.clock.now(), missed_count=3), ExecutionType.CATCH_UP
    )

    assert summary.action_count == 2
    assert sorted(t.id for t in board.tasks.find_all() if t.completed) == ["a", "b"]
    entry = board.rules.find_by_id("sweep").recent_executions[0]  # type: ignore[union-attr]
    assert entry.task_name == "2 tasks"
    assert entry.execution_type is ExecutionType.CATCH_UP
    assert board.service.undo.get() is None


def test_build_fired_events(make_rule: Callable[..., AutomationRule]) -> None:
    due = make_rule(
        "due",
        {"type": "scheduled_due_date_relative", "schedule": {"offsetMinutes": 0}},
        {"type": "mark_card_complete"},
    )
    now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    events = AutomationService.build_fired_events(due, ScheduleEvaluation(True, now, ("a", "b"), 2))
    assert [e.entity_id for e in events] == ["a", "b"]
    assert all(e.type is EventType.SCHEDULE_FIRED and e.triggered_by_rule == "due" for e in events)

    interval = make_rule("i", {"type": "scheduled_interval", "schedule": {"intervalMinutes": 30}}, {"type": "mark_card_complete"})
    assert [e.entity_id for e in AutomationService.build_fired_events(interval, ScheduleEvaluation(True, now))] == ["i"]


def test_notify_tick_sends_one_merged_summary(board: Board) -> None:
    tick = TickSummary(at=board.clock.now(), is_catch_up=True)
    board.service.notify_tick(tick)
    assert board.sink.summaries == []

    one, two = ExecutionSummary(), ExecutionSummary()
    one.record("r1", "Rule r1", "Task a")
    two.record("r2", "Rule r2", "Task b")
    two.record("r2", "Rule r2", "Task c")
    tick.summaries = [one, two]
    board.service.notify_tick(tick)

    assert len(board.sink.summaries) == 1
    merged = board.sink.summaries[0]
    assert merged.execution_type is ExecutionType.CATCH_UP
    assert merged.action_count == 3


@settings(max_examples=50, deadline=None)
@given(
    moves=st.lists(
        st.tuples(st.sampled_from(["s0", "s1", "s2", "s3"]), st.sampled_from(["s0", "s1", "s2", "s3"])),
        min_size=1,
        max_size=8,
    ),
    depth=st.integers(min_value=1, max_value=10),
)
def test_property_cascade_terminates_and_applies_each_rule_once(moves: list[tuple[str, str]], depth: int) -> None:
    clock = FakeClock()
    sections = InMemorySectionRepository([Section(f"s{n}", "p1", f"S{n}") for n in range(4)])
    tasks = InMemoryTaskRepository(
        [Task("a", "p1", "Task a", clock.now(), clock.now(), section_id="s0")]
    )
    rules = InMemoryRuleRepository(
        AutomationRule.model_validate(
            {
                "id": f"r{n}",
                "projectId": "p1",
                "name": f"Rule {n}",
                "trigger": _into(source),
                "action": _move_to(target),
                "order": n,
            }
        )
        for n, (source, target) in enumerate(moves)
    )
    service = AutomationService(
        tasks,
        sections,
        rules,
        clock=clock,
        sink=CollectingSink(),
        config=FlowkeeperConfig(engine=EngineConfig(max_cascade_depth=depth)),
    )
    tasks.update("a", section_id="s1")
    event = DomainEvent(
        EventType.TASK_UPDATED, "a", "p1", changes={"sectionId": "s1"}, previous_values={"sectionId": "s0"}
    )

    summary = service.handle_event(event)

    assert summary is not None
    assert all(run.batch_size == 1 for run in summary.runs.values())
    assert summary.action_count <= len(moves)
