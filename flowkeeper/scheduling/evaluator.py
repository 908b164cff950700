"""Pure schedule evaluation for scheduled triggers.

Each ``evaluate_*`` function answers "should this fire now?" and returns the
``last_evaluated_at`` value to persist. Cron and calendar arithmetic happen in
the supplied zone; all returned instants are UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, Sequence

from flowkeeper.domain.models import Task
from flowkeeper.evaluation.dates import last_day_of_month
from flowkeeper.rules.models import (
    AutomationRule,
    CronSchedule,
    CronTrigger,
    DueDateRelativeTrigger,
    IntervalTrigger,
    OneTimeTrigger,
    ScheduledTrigger,
    is_scheduled_trigger,
)

UTC = timezone.utc
DEFAULT_FIRST_LOOKBACK = timedelta(minutes=1)


@dataclass(frozen=True, slots=True)
class ScheduleEvaluation:
    should_fire: bool
    new_last_evaluated_at: datetime
    matching_task_ids: tuple[str, ...] | None = None
    missed_count: int = 0

    @property
    def collapsed(self) -> bool:
        """True when several missed firings were folded into this one."""
        return self.missed_count > 1


@dataclass(frozen=True, slots=True)
class ScheduledFiring:
    rule: AutomationRule
    evaluation: ScheduleEvaluation


def evaluate_interval(now: datetime, last_evaluated_at: datetime | None, interval_minutes: int) -> ScheduleEvaluation:
    if last_evaluated_at is None:
        return ScheduleEvaluation(True, now, missed_count=1)
    period = timedelta(minutes=interval_minutes)
    elapsed = now - last_evaluated_at
    if elapsed >= period:
        return ScheduleEvaluation(True, now, missed_count=elapsed // period)
    return ScheduleEvaluation(False, last_evaluated_at)


def _cron_candidate(day: datetime, schedule: CronSchedule, tz: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, schedule.hour, schedule.minute, tzinfo=tz)


def _cron_day_matches(candidate: datetime, schedule: CronSchedule) -> bool:
    # cron numbering: Sunday is 0
    if schedule.days_of_week and (candidate.weekday() + 1) % 7 not in schedule.days_of_week:
        return False
    if schedule.days_of_month:
        last = last_day_of_month(candidate.year, candidate.month)
        if candidate.day not in {min(d, last) for d in schedule.days_of_month}:
            return False
    return True


def _cron_lookback_days(schedule: CronSchedule) -> int:
    return 62 if schedule.days_of_month else 7


def iter_cron_matches_before(now: datetime, schedule: CronSchedule, tz: tzinfo = UTC) -> Iterable[datetime]:
    """Matching instants at or before ``now``, newest first, within the lookback window."""
    local_now = now.astimezone(tz)
    for offset in range(_cron_lookback_days(schedule) + 1):
        candidate = _cron_candidate(local_now - timedelta(days=offset), schedule, tz)
        if candidate > local_now:
            continue
        if _cron_day_matches(candidate, schedule):
            yield candidate.astimezone(UTC)


def find_most_recent_cron_match(now: datetime, schedule: CronSchedule, tz: tzinfo = UTC) -> datetime | None:
    return next(iter(iter_cron_matches_before(now, schedule, tz)), None)


def find_next_cron_match(now: datetime, schedule: CronSchedule, tz: tzinfo = UTC) -> datetime | None:
    local_now = now.astimezone(tz)
    for offset in range(_cron_lookback_days(schedule) + 1):
        candidate = _cron_candidate(local_now + timedelta(days=offset), schedule, tz)
        if candidate <= local_now:
            continue
        if _cron_day_matches(candidate, schedule):
            return candidate.astimezone(UTC)
    return None


def _same_minute(a: datetime, b: datetime) -> bool:
    return a.replace(second=0, microsecond=0) == b.replace(second=0, microsecond=0)


def evaluate_cron(
    now: datetime,
    last_evaluated_at: datetime | None,
    schedule: CronSchedule,
    tz: tzinfo = UTC,
) -> ScheduleEvaluation:
    most_recent = find_most_recent_cron_match(now, schedule, tz)
    if most_recent is None:
        return ScheduleEvaluation(False, last_evaluated_at or now)
    if last_evaluated_at is None:
        # first evaluation only fires inside the matching minute
        fire = _same_minute(now, most_recent)
        return ScheduleEvaluation(fire, now, missed_count=1 if fire else 0)
    if most_recent > last_evaluated_at:
        missed = sum(1 for match in iter_cron_matches_before(now, schedule, tz) if match > last_evaluated_at)
        return ScheduleEvaluation(True, now, missed_count=missed)
    return ScheduleEvaluation(False, last_evaluated_at)


def evaluate_due_date_relative(
    now: datetime,
    last_evaluated_at: datetime | None,
    offset_minutes: int,
    tasks: Sequence[Task],
    first_lookback: timedelta = DEFAULT_FIRST_LOOKBACK,
) -> ScheduleEvaluation:
    """Fires for top-level open tasks whose ``due + offset`` fell in ``(window_start, now]``."""
    window_start = last_evaluated_at if last_evaluated_at is not None else now - first_lookback
    offset = timedelta(minutes=offset_minutes)
    matching = tuple(
        task.id
        for task in tasks
        if task.due_date is not None
        and not task.completed
        and task.parent_task_id is None
        and window_start < task.due_date + offset <= now
    )
    return ScheduleEvaluation(bool(matching), now, matching_task_ids=matching, missed_count=len(matching))


def evaluate_one_time(now: datetime, last_evaluated_at: datetime | None, fire_at: datetime) -> ScheduleEvaluation:
    if now < fire_at:
        return ScheduleEvaluation(False, last_evaluated_at or now)
    if last_evaluated_at is not None and last_evaluated_at >= fire_at:
        return ScheduleEvaluation(False, last_evaluated_at)
    return ScheduleEvaluation(True, now, missed_count=1)


def should_fire(
    trigger: ScheduledTrigger,
    last_evaluated_at: datetime | None,
    now: datetime,
    *,
    tasks: Sequence[Task] = (),
    tz: tzinfo = UTC,
    first_lookback: timedelta = DEFAULT_FIRST_LOOKBACK,
) -> ScheduleEvaluation:
    if isinstance(trigger, IntervalTrigger):
        return evaluate_interval(now, last_evaluated_at, trigger.schedule.interval_minutes)
    if isinstance(trigger, CronTrigger):
        return evaluate_cron(now, last_evaluated_at, trigger.schedule, tz)
    if isinstance(trigger, DueDateRelativeTrigger):
        return evaluate_due_date_relative(
            now, last_evaluated_at, trigger.schedule.offset_minutes, tasks, first_lookback
        )
    if isinstance(trigger, OneTimeTrigger):
        return evaluate_one_time(now, last_evaluated_at, trigger.schedule.fire_at)
    raise TypeError(f"not a scheduled trigger: {type(trigger).__name__}")


def next_fire_time(trigger: ScheduledTrigger, now: datetime, tz: tzinfo = UTC) -> datetime | None:
    """Earliest instant the trigger could next fire; ``None`` when it never will or depends on tasks."""
    last = trigger.last_evaluated_at
    if isinstance(trigger, IntervalTrigger):
        if last is None:
            return now
        return max(now, last + timedelta(minutes=trigger.schedule.interval_minutes))
    if isinstance(trigger, CronTrigger):
        return find_next_cron_match(now, trigger.schedule, tz)
    if isinstance(trigger, OneTimeTrigger):
        fire_at = trigger.schedule.fire_at
        if last is not None and last >= fire_at:
            return None
        return max(now, fire_at)
    return None


def evaluate_scheduled_rules(
    now: datetime,
    rules: Iterable[AutomationRule],
    tasks: Sequence[Task],
    *,
    tz: tzinfo = UTC,
    first_lookback: timedelta = DEFAULT_FIRST_LOOKBACK,
) -> list[ScheduledFiring]:
    """Active scheduled rules that fire at ``now``, in input order."""
    firings: list[ScheduledFiring] = []
    for rule in rules:
        if not rule.is_active or not is_scheduled_trigger(rule.trigger):
            continue
        project_tasks = (
            [t for t in tasks if t.project_id == rule.project_id]
            if isinstance(rule.trigger, DueDateRelativeTrigger)
            else ()
        )
        evaluation = should_fire(
            rule.trigger,
            rule.trigger.last_evaluated_at,
            now,
            tasks=project_tasks,
            tz=tz,
            first_lookback=first_lookback,
        )
        if evaluation.should_fire:
            firings.append(ScheduledFiring(rule, evaluation))
    return firings
