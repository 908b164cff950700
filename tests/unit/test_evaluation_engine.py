"""Unit tests for pure rule evaluation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from hypothesis import given
from hypothesis import strategies as st

from flowkeeper.domain.models import DomainEvent, EventType, Section, Task
from flowkeeper.evaluation.engine import EvaluationContext, evaluate_rules
from flowkeeper.rules.models import ActionType, AutomationRule

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
SECTIONS = [Section("todo", "p1", "To Do"), Section("done", "p1", "Done")]
COMPLETE = {"type": "mark_card_complete"}


def _moved(task_id: str, old: str | None, new: str, **kwargs: Any) -> DomainEvent:
    return DomainEvent(
        EventType.TASK_UPDATED,
        task_id,
        "p1",
        changes={"sectionId": new},
        previous_values={"sectionId": old},
        **kwargs,
    )


def _context(tasks: list[Task]) -> EvaluationContext:
    return EvaluationContext(tasks=tasks, sections=SECTIONS, now=NOW)


def test_moved_into_section_matches_only_target_section(
    make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]
) -> None:
    task = make_task("t1", section_id="done")
    rules = [
        make_rule("r1", {"type": "card_moved_into_section", "sectionId": "done"}, COMPLETE),
        make_rule("r2", {"type": "card_moved_into_section", "sectionId": "todo"}, COMPLETE),
        make_rule("r3", {"type": "card_moved_out_of_section", "sectionId": "todo"}, COMPLETE),
    ]
    actions = evaluate_rules(_moved("t1", "todo", "done"), rules, _context([task]))
    assert [a.rule_id for a in actions] == ["r1", "r3"]
    assert actions[0].action_type is ActionType.MARK_CARD_COMPLETE
    assert actions[0].target_entity_id == "t1"
    assert actions[0].dedup_key == "r1:t1:mark_card_complete"


def test_subtask_events_never_match(make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]) -> None:
    task = make_task("child", section_id="done", parent_task_id="parent")
    rules = [make_rule("r1", {"type": "card_moved_into_section", "sectionId": "done"}, COMPLETE)]
    assert evaluate_rules(_moved("child", "todo", "done"), rules, _context([task])) == []


def test_disabled_and_broken_rules_are_ignored(
    make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]
) -> None:
    task = make_task("t1", section_id="done")
    trigger = {"type": "card_moved_into_section", "sectionId": "done"}
    rules = [
        make_rule("off", trigger, COMPLETE, enabled=False),
        make_rule("broken", trigger, COMPLETE, brokenReason="section_deleted"),
    ]
    assert evaluate_rules(_moved("t1", "todo", "done"), rules, _context([task])) == []


def test_completion_transitions(make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]) -> None:
    task = make_task("t1", completed=True)
    rules = [
        make_rule("on", {"type": "card_marked_complete"}, {"type": "move_card_to_bottom_of_section", "sectionId": "done"}),
        make_rule("off", {"type": "card_marked_incomplete"}, {"type": "move_card_to_top_of_section", "sectionId": "todo"}),
    ]
    completed = DomainEvent(
        EventType.TASK_UPDATED, "t1", "p1", changes={"completed": True}, previous_values={"completed": False}
    )
    reopened = DomainEvent(
        EventType.TASK_UPDATED, "t1", "p1", changes={"completed": False}, previous_values={"completed": True}
    )
    unchanged = DomainEvent(
        EventType.TASK_UPDATED, "t1", "p1", changes={"completed": True}, previous_values={"completed": True}
    )
    ctx = _context([task])
    assert [a.rule_id for a in evaluate_rules(completed, rules, ctx)] == ["on"]
    assert [a.rule_id for a in evaluate_rules(reopened, rules, ctx)] == ["off"]
    assert evaluate_rules(unchanged, rules, ctx) == []


def test_filters_gate_task_events(make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]) -> None:
    rule = make_rule(
        "r1",
        {"type": "card_moved_into_section", "sectionId": "done"},
        COMPLETE,
        filters=[{"type": "has_due_date"}],
    )
    without_due = make_task("t1", section_id="done")
    assert evaluate_rules(_moved("t1", "todo", "done"), [rule], _context([without_due])) == []
    with_due = make_task("t1", section_id="done", due_date=NOW)
    assert len(evaluate_rules(_moved("t1", "todo", "done"), [rule], _context([with_due]))) == 1


def test_created_and_section_events(make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]) -> None:
    create_card = {"type": "create_card", "sectionId": "todo", "cardTitle": "Checklist"}
    rules = [
        make_rule("created", {"type": "card_created_in_section", "sectionId": "todo"}, COMPLETE),
        make_rule("section", {"type": "section_created"}, create_card),
        make_rule("renamed", {"type": "section_renamed"}, create_card),
    ]
    task = make_task("t1", section_id="todo")
    ctx = _context([task])
    created = DomainEvent(EventType.TASK_CREATED, "t1", "p1", changes={"sectionId": "todo"})
    assert [a.rule_id for a in evaluate_rules(created, rules, ctx)] == ["created"]

    section_created = DomainEvent(EventType.SECTION_CREATED, "s9", "p1", changes={"name": "Review"})
    assert [a.rule_id for a in evaluate_rules(section_created, rules, ctx)] == ["section"]

    renamed = DomainEvent(
        EventType.SECTION_UPDATED, "todo", "p1", changes={"name": "Backlog"}, previous_values={"name": "To Do"}
    )
    assert [a.rule_id for a in evaluate_rules(renamed, rules, ctx)] == ["renamed"]

    deleted = DomainEvent(EventType.TASK_DELETED, "t1", "p1")
    assert evaluate_rules(deleted, rules, ctx) == []


def test_schedule_fired_targets_filtered_top_level_tasks(
    make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]
) -> None:
    rule = make_rule(
        "sched",
        {"type": "scheduled_interval", "schedule": {"intervalMinutes": 30}},
        {"type": "move_card_to_top_of_section", "sectionId": "todo"},
        filters=[{"type": "in_section", "sectionId": "done"}],
    )
    tasks = [
        make_task("a", section_id="done"),
        make_task("b", section_id="todo"),
        make_task("c", section_id="done", parent_task_id="a"),
        make_task("d", section_id="done", project_id="p2"),
    ]
    event = DomainEvent(EventType.SCHEDULE_FIRED, "sched", "p1", triggered_by_rule="sched")
    actions = evaluate_rules(event, [rule], _context(tasks))
    assert [a.target_entity_id for a in actions] == ["a"]


def test_schedule_fired_create_card_targets_section(make_rule: Callable[..., AutomationRule]) -> None:
    rule = make_rule(
        "sched",
        {"type": "scheduled_cron", "sectionId": "todo", "schedule": {"hour": 9, "minute": 0}},
        {"type": "create_card", "sectionId": "__trigger_section__", "cardTitle": "Standup {{date}}"},
    )
    event = DomainEvent(EventType.SCHEDULE_FIRED, "sched", "p1", triggered_by_rule="sched")
    actions = evaluate_rules(event, [rule], _context([]))
    assert [(a.action_type, a.target_entity_id) for a in actions] == [(ActionType.CREATE_CARD, "todo")]


def test_schedule_fired_ignores_other_rules(make_task: Callable[..., Task], make_rule: Callable[..., AutomationRule]) -> None:
    rule = make_rule("sched", {"type": "scheduled_interval", "schedule": {"intervalMinutes": 30}}, COMPLETE)
    event = DomainEvent(EventType.SCHEDULE_FIRED, "other", "p1", triggered_by_rule="other")
    assert evaluate_rules(event, [rule], _context([make_task("a")])) == []


TASK_TRIGGERS = [
    {"type": "card_moved_into_section", "sectionId": "done"},
    {"type": "card_moved_out_of_section", "sectionId": "todo"},
    {"type": "card_marked_complete"},
    {"type": "card_marked_incomplete"},
    {"type": "card_created_in_section", "sectionId": "done"},
]


@given(
    triggers=st.lists(st.sampled_from(TASK_TRIGGERS), min_size=1, max_size=5),
    event_type=st.sampled_from([EventType.TASK_CREATED, EventType.TASK_UPDATED]),
    completed=st.booleans(),
)
def test_property_subtask_events_never_produce_actions(
    triggers: list[dict[str, Any]], event_type: EventType, completed: bool
) -> None:
    subtask = Task(
        id="child",
        project_id="p1",
        description="Child",
        created_at=NOW,
        updated_at=NOW,
        section_id="done",
        parent_task_id="parent",
        completed=completed,
    )
    rules = [
        AutomationRule.model_validate(
            {
                "id": f"r{n}",
                "projectId": "p1",
                "name": f"Rule {n}",
                "trigger": trigger,
                "action": COMPLETE,
                "createdAt": NOW.isoformat(),
                "updatedAt": NOW.isoformat(),
            }
        )
        for n, trigger in enumerate(triggers)
    ]
    event = DomainEvent(
        event_type,
        "child",
        "p1",
        changes={"sectionId": "done", "completed": completed},
        previous_values={"sectionId": "todo", "completed": not completed},
    )
    assert evaluate_rules(event, rules, _context([subtask])) == []
