"""Card filter predicates.

Calendar filters compare local dates in the zone of ``FilterContext.now``.
Age filters compare elapsed time and are strict (exactly N days old is not
"more than N days").
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from flowkeeper.domain.models import Task
from flowkeeper.evaluation.dates import calculate_working_days
from flowkeeper.exceptions import UnknownFilterTypeError


@dataclass(frozen=True, slots=True)
class FilterContext:
    now: datetime

    @property
    def today(self) -> date:
        return self.now.date()

    def local_date(self, value: datetime) -> date:
        return value.astimezone(self.now.tzinfo).date()


FilterPredicate = Callable[[Task, Any, FilterContext], bool]


def _due(task: Task, ctx: FilterContext) -> date | None:
    return ctx.local_date(task.due_date) if task.due_date is not None else None


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _next_month(day: date) -> tuple[int, int]:
    return (day.year + 1, 1) if day.month == 12 else (day.year, day.month + 1)


def _offset_date(ctx: FilterContext, value: int, unit: str) -> date:
    if unit == "working_days":
        return calculate_working_days(value, ctx.today)
    return ctx.today + timedelta(days=value)


def _in_section(task: Task, f: Any, ctx: FilterContext) -> bool:
    return task.section_id == f.section_id


def _not_in_section(task: Task, f: Any, ctx: FilterContext) -> bool:
    return task.section_id != f.section_id


def _has_due_date(task: Task, f: Any, ctx: FilterContext) -> bool:
    return task.due_date is not None


def _no_due_date(task: Task, f: Any, ctx: FilterContext) -> bool:
    return task.due_date is None


def _is_overdue(task: Task, f: Any, ctx: FilterContext) -> bool:
    return task.due_date is not None and not task.completed and task.due_date < ctx.now


def _due_today(task: Task, f: Any, ctx: FilterContext) -> bool:
    return _due(task, ctx) == ctx.today


def _due_tomorrow(task: Task, f: Any, ctx: FilterContext) -> bool:
    return _due(task, ctx) == ctx.today + timedelta(days=1)


def _due_this_week(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and _week_start(due) == _week_start(ctx.today)


def _due_next_week(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and _week_start(due) == _week_start(ctx.today) + timedelta(days=7)


def _due_this_month(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and (due.year, due.month) == (ctx.today.year, ctx.today.month)


def _due_next_month(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and (due.year, due.month) == _next_month(ctx.today)


def _negated(positive: FilterPredicate) -> FilterPredicate:
    def _predicate(task: Task, f: Any, ctx: FilterContext) -> bool:
        if task.due_date is None:
            return True
        return not positive(task, f, ctx)

    return _predicate


def _due_in_less_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and ctx.today < due <= _offset_date(ctx, f.value, f.unit)


def _due_in_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and due > _offset_date(ctx, f.value, f.unit)


def _due_in_exactly(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    return due is not None and due == _offset_date(ctx, f.value, f.unit)


def _due_in_between(task: Task, f: Any, ctx: FilterContext) -> bool:
    due = _due(task, ctx)
    if due is None:
        return False
    return _offset_date(ctx, f.min_value, f.unit) <= due <= _offset_date(ctx, f.max_value, f.unit)


def _older_than(moment: datetime, days: int, ctx: FilterContext) -> bool:
    return ctx.now - moment > timedelta(days=days)


def _created_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    return _older_than(task.created_at, f.value, ctx)


def _completed_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    if not task.completed:
        return False
    if task.completed_at is None:
        return True
    return _older_than(task.completed_at, f.value, ctx)


def _last_updated_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    return _older_than(task.updated_at, f.value, ctx)


def _overdue_by_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    if task.due_date is None or task.completed:
        return False
    return _older_than(task.due_date, f.value, ctx)


def _in_section_for_more_than(task: Task, f: Any, ctx: FilterContext) -> bool:
    return _older_than(task.moved_to_section_at or task.created_at, f.value, ctx)


FILTER_PREDICATES: dict[str, FilterPredicate] = {
    "in_section": _in_section,
    "not_in_section": _not_in_section,
    "has_due_date": _has_due_date,
    "no_due_date": _no_due_date,
    "is_overdue": _is_overdue,
    "due_today": _due_today,
    "due_tomorrow": _due_tomorrow,
    "due_this_week": _due_this_week,
    "due_next_week": _due_next_week,
    "due_this_month": _due_this_month,
    "due_next_month": _due_next_month,
    "not_due_today": _negated(_due_today),
    "not_due_tomorrow": _negated(_due_tomorrow),
    "not_due_this_week": _negated(_due_this_week),
    "not_due_next_week": _negated(_due_next_week),
    "not_due_this_month": _negated(_due_this_month),
    "not_due_next_month": _negated(_due_next_month),
    "due_in_less_than": _due_in_less_than,
    "due_in_more_than": _due_in_more_than,
    "due_in_exactly": _due_in_exactly,
    "due_in_between": _due_in_between,
    "created_more_than": _created_more_than,
    "completed_more_than": _completed_more_than,
    "last_updated_more_than": _last_updated_more_than,
    "not_modified_in": _last_updated_more_than,
    "overdue_by_more_than": _overdue_by_more_than,
    "in_section_for_more_than": _in_section_for_more_than,
}


def evaluate_filter(card_filter: Any, task: Task, ctx: FilterContext) -> bool:
    predicate = FILTER_PREDICATES.get(str(card_filter.type))
    if predicate is None:
        raise UnknownFilterTypeError(str(card_filter.type))
    return predicate(task, card_filter, ctx)


def evaluate_filters(filters: Iterable[Any], task: Task, ctx: FilterContext) -> bool:
    """AND over all filters; an empty list matches every task."""
    return all(evaluate_filter(f, task, ctx) for f in filters)
