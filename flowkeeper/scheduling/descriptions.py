"""Human-readable schedule and next-run text for rule previews and log entries."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo

from flowkeeper.rules.models import (
    CronTrigger,
    DueDateRelativeTrigger,
    IntervalTrigger,
    OneTimeTrigger,
)
from flowkeeper.scheduling.cron import DAY_NAMES_SHORT, format_time, ordinal
from flowkeeper.scheduling.evaluator import find_next_cron_match

MONTH_ABBREVS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_MINUTES_PER_DAY = 1440


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_short_date(value: datetime, tz: tzinfo = timezone.utc) -> str:
    local = value.astimezone(tz)
    return f"{MONTH_ABBREVS[local.month - 1]} {local.day}, {local.year}"


def format_fire_at(value: datetime, tz: tzinfo = timezone.utc) -> str:
    local = value.astimezone(tz)
    return f"{format_short_date(local, tz)} at {format_time(local.hour, local.minute)}"


def format_display_offset(offset_minutes: int, display_unit: str | None = None) -> str:
    """``-1440`` reads "1 day before due date"; the unit is picked from the size when not given."""
    magnitude = abs(offset_minutes)
    direction = "before" if offset_minutes < 0 else "after"
    if display_unit == "days" or (display_unit is None and magnitude >= _MINUTES_PER_DAY):
        text = _plural(_round_half_up(magnitude / _MINUTES_PER_DAY), "day")
    elif display_unit == "hours" or (display_unit is None and magnitude >= 60):
        text = _plural(_round_half_up(magnitude / 60), "hour")
    else:
        text = _plural(magnitude, "minute")
    return f"{text} {direction} due date"


def describe_schedule(trigger: object) -> str:
    if isinstance(trigger, IntervalTrigger):
        minutes = trigger.schedule.interval_minutes
        if minutes % _MINUTES_PER_DAY == 0:
            return _plural(minutes // _MINUTES_PER_DAY, "day")
        if minutes % 60 == 0:
            return _plural(minutes // 60, "hour")
        return _plural(minutes, "minute")
    if isinstance(trigger, CronTrigger):
        schedule = trigger.schedule
        time = format_time(schedule.hour, schedule.minute)
        if schedule.days_of_week:
            return f"{', '.join(DAY_NAMES_SHORT[d] for d in schedule.days_of_week)} at {time}"
        if schedule.days_of_month:
            return f"{', '.join(ordinal(d) for d in schedule.days_of_month)} of month at {time}"
        return f"day at {time}"
    if isinstance(trigger, DueDateRelativeTrigger):
        return format_display_offset(trigger.schedule.offset_minutes, trigger.schedule.display_unit)
    if isinstance(trigger, OneTimeTrigger):
        return f"On {format_fire_at(trigger.schedule.fire_at)}"
    return "Unknown"


def _format_duration(seconds: float) -> str:
    minutes = _round_half_up(seconds / 60)
    if minutes < 60:
        return f"{minutes} min"
    hours = _round_half_up(minutes / 60)
    if hours < 24:
        return f"{hours}h"
    return f"{_round_half_up(hours / 24)}d"


def compute_next_run_description(
    trigger: object,
    now: datetime,
    *,
    enabled: bool = True,
    tz: tzinfo = timezone.utc,
) -> str:
    if isinstance(trigger, IntervalTrigger):
        if trigger.last_evaluated_at is None:
            return "On next tick"
        remaining = trigger.last_evaluated_at.timestamp() + trigger.schedule.interval_minutes * 60 - now.timestamp()
        if remaining <= 0:
            return "On next tick"
        return f"in {_format_duration(remaining)}"
    if isinstance(trigger, CronTrigger):
        upcoming = find_next_cron_match(now, trigger.schedule, tz)
        if upcoming is None:
            return f"Next: {describe_schedule(trigger)}"
        return f"Next: {format_fire_at(upcoming, tz)}"
    if isinstance(trigger, DueDateRelativeTrigger):
        return "Checks on next tick"
    if isinstance(trigger, OneTimeTrigger):
        fire_at = trigger.schedule.fire_at.astimezone(tz)
        date_text = format_short_date(fire_at, tz)
        if not enabled:
            return f"Fired on {date_text}"
        if fire_at.date() == now.astimezone(tz).date():
            return f"Fires today at {format_time(fire_at.hour, fire_at.minute)}"
        days = round((fire_at - now).total_seconds() / 86400)
        return f"Fires on {date_text} (in {_plural(days, 'day')})"
    return "Unknown"
