"""Five-field cron strings to and from structured cron schedules.

Only ``minute hour day-of-month * day-of-week`` with a single minute and hour
is representable. Errors are returned in ``CronParseResult`` and never raised.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import ValidationError

from flowkeeper.rules.models import CronSchedule

FIELD_NAMES = ("minute", "hour", "day-of-month", "month", "day-of-week")

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
DAY_NAMES_SHORT = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

_UNSUPPORTED_CHARS = re.compile(r"[LWlw#?]")


@dataclass(frozen=True, slots=True)
class CronParseResult:
    success: bool
    schedule: CronSchedule | None = None
    error: str | None = None
    field: str | None = None

    @classmethod
    def failure(cls, error: str, field: str | None = None) -> "CronParseResult":
        return cls(success=False, error=error, field=field)


class _FieldError(ValueError):
    pass


def _to_int(raw: str) -> int | None:
    raw = raw.strip()
    return int(raw) if raw.isdigit() else None


def _parse_range(part: str, low: int, high: int, name: str) -> tuple[int, int]:
    bounds = part.split("-")
    if len(bounds) != 2:
        raise _FieldError(f'Invalid range "{part}" in {name} field')
    start, end = _to_int(bounds[0]), _to_int(bounds[1])
    if start is None or end is None or start < low or end > high or start > end:
        raise _FieldError(f'Invalid range "{part}" in {name} field')
    return start, end


def parse_field(raw: str, low: int, high: int, name: str) -> list[int] | None:
    """Values selected by one cron field; ``None`` means wildcard."""
    if _UNSUPPORTED_CHARS.search(raw):
        raise _FieldError(f'Unsupported character in {name} field: "{raw}"')
    if raw == "*":
        return None

    if "/" in raw:
        range_part, _, step_raw = raw.partition("/")
        step = _to_int(step_raw)
        if step is None or step < 1:
            raise _FieldError(f'Invalid step value "{step_raw}" in {name} field')
        start, end = low, high
        if range_part != "*":
            if "-" in range_part:
                start, end = _parse_range(range_part, low, high, name)
            else:
                value = _to_int(range_part)
                if value is None or value < low or value > high:
                    raise _FieldError(f'Invalid value "{range_part}" in {name} field')
                start = value
        return list(range(start, end + 1, step))

    if "-" in raw:
        start, end = _parse_range(raw, low, high, name)
        return list(range(start, end + 1))

    if "," in raw:
        values = []
        for part in raw.split(","):
            value = _to_int(part)
            if value is None or value < low or value > high:
                raise _FieldError(f'Invalid value "{part}" in {name} field')
            values.append(value)
        return sorted(values)

    value = _to_int(raw)
    if value is None or value < low or value > high:
        raise _FieldError(f'Invalid value "{raw}" in {name} field (expected {low}-{high})')
    return [value]


def _single(raw: str, low: int, high: int, name: str) -> int:
    values = parse_field(raw, low, high, name)
    if values is None:
        raise _FieldError(
            f"Wildcard (*) for {name} field produces multiple values and cannot be represented as a single schedule"
        )
    if len(values) != 1:
        raise _FieldError(
            f'The {name} field "{raw}" produces multiple values and cannot be represented as a single schedule'
        )
    return values[0]


def parse_cron_expression(expression: str) -> CronParseResult:
    trimmed = expression.strip()
    if not trimmed:
        return CronParseResult.failure("Cron expression is required")

    unsupported = _UNSUPPORTED_CHARS.search(trimmed)
    if unsupported:
        return CronParseResult.failure(f'Unsupported character "{unsupported.group(0)}" in cron expression')

    fields = trimmed.split()
    if len(fields) != 5:
        message = f"Expected 5 fields (minute hour day-of-month month day-of-week), got {len(fields)}"
        if len(fields) > 5:
            message += ". 6-field (seconds) and 7-field (year) cron expressions are not supported."
        return CronParseResult.failure(message)

    minute_raw, hour_raw, dom_raw, month_raw, dow_raw = fields
    if month_raw != "*":
        return CronParseResult.failure("Month filtering is not supported. Use * for the month field.", "month")

    current = "minute"
    try:
        minute = _single(minute_raw, 0, 59, "minute")
        current = "hour"
        hour = _single(hour_raw, 0, 23, "hour")
        current = "day-of-month"
        days_of_month = parse_field(dom_raw, 1, 31, "day-of-month") or []
        current = "day-of-week"
        days_of_week = parse_field(dow_raw, 0, 6, "day-of-week") or []
    except _FieldError as exc:
        return CronParseResult.failure(str(exc), current)

    try:
        schedule = CronSchedule(hour=hour, minute=minute, days_of_week=days_of_week, days_of_month=days_of_month)
    except ValidationError as exc:
        return CronParseResult.failure(str(exc))
    return CronParseResult(success=True, schedule=schedule)


def to_cron_expression(schedule: CronSchedule) -> str:
    dom = ",".join(str(d) for d in schedule.days_of_month) if schedule.days_of_month else "*"
    dow = ",".join(str(d) for d in schedule.days_of_week) if schedule.days_of_week else "*"
    return f"{schedule.minute} {schedule.hour} {dom} * {dow}"


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def format_time(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def describe_cron(schedule: CronSchedule) -> str:
    """Human text for a cron schedule.

    A single day reads "Every Monday at 09:00"; several days read as a list,
    "Mon, Wed, Fri at 09:00".
    """
    time = format_time(schedule.hour, schedule.minute)
    if schedule.days_of_week:
        if len(schedule.days_of_week) == 1:
            return f"Every {DAY_NAMES[schedule.days_of_week[0]]} at {time}"
        days = ", ".join(DAY_NAMES_SHORT[d] for d in schedule.days_of_week)
        return f"{days} at {time}"
    if schedule.days_of_month:
        days = ", ".join(ordinal(d) for d in schedule.days_of_month)
        if len(schedule.days_of_month) == 1:
            return f"Every {days} of month at {time}"
        return f"{days} of month at {time}"
    return f"Every day at {time}"
