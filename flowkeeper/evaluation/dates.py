"""Calendar arithmetic for relative due dates.

All functions work on ``datetime.date`` values; callers convert instants to
dates in the zone they care about first. Weekday numbers follow
``date.weekday()`` (Monday is 0).
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta
from typing import Literal

from flowkeeper.exceptions import UnknownDateOptionError

MonthTarget = Literal["this_month", "next_month"]

WEEKDAYS: dict[str, int] = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

ORDINALS: dict[str, int | Literal["last"]] = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "last": "last",
}

_DAY_OF_MONTH_RE = re.compile(r"^day_of_month_(\d{1,2})$")
_NEXT_WEEK_ON_RE = re.compile(r"^next_week_([a-z]+)$")
_NEXT_WEEKDAY_RE = re.compile(r"^next_([a-z]+)$")
_NTH_WEEKDAY_RE = re.compile(r"^([a-z]+?)_([a-z]+?)_of_month$")
_IN_DAYS_RE = re.compile(r"^in_(\d{1,4})_(days|working_days)$")

_SIMPLE_OPTIONS = frozenset(
    {"today", "tomorrow", "next_working_day", "last_day_of_month", "last_working_day_of_month", "specific_date"}
)


def is_working_day(day: date) -> bool:
    return day.weekday() < 5


def calculate_working_days(n: int, start: date) -> date:
    """The date ``n`` working days after ``start``; ``n == 0`` rolls a weekend forward to Monday."""
    if n == 0:
        result = start
        while not is_working_day(result):
            result += timedelta(days=1)
        return result
    result = start
    added = 0
    while added < n:
        result += timedelta(days=1)
        if is_working_day(result):
            added += 1
    return result


def count_working_days_between(start: date, end: date) -> int:
    """Working days strictly between ``start`` and ``end``."""
    count = 0
    current = start + timedelta(days=1)
    while current < end:
        if is_working_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def calculate_next_weekday(weekday: int, start: date) -> date:
    """Next occurrence of ``weekday`` strictly after ``start``."""
    days = weekday - start.weekday()
    if days <= 0:
        days += 7
    return start + timedelta(days=days)


def calculate_next_week_on(weekday: int, start: date) -> date:
    """``weekday`` in the Monday-based week after the one containing ``start``."""
    next_monday = start - timedelta(days=start.weekday()) + timedelta(days=7)
    return next_monday + timedelta(days=weekday)


def _target_month(start: date, month_target: MonthTarget | None) -> tuple[int, int]:
    if month_target == "next_month":
        return (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    return start.year, start.month


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def calculate_day_of_month(
    day: int | Literal["last", "last_working"],
    month_target: MonthTarget | None,
    start: date,
) -> date:
    year, month = _target_month(start, month_target)
    last = last_day_of_month(year, month)
    if day == "last":
        return date(year, month, last)
    if day == "last_working":
        result = date(year, month, last)
        while not is_working_day(result):
            result -= timedelta(days=1)
        return result
    return date(year, month, min(int(day), last))


def calculate_nth_weekday_of_month(
    nth: int | Literal["last"],
    weekday: int,
    month_target: MonthTarget | None,
    start: date,
) -> date:
    """The ``nth`` ``weekday`` of the target month; falls back to the last one if it does not exist."""
    year, month = _target_month(start, month_target)
    occurrences = [
        date(year, month, d)
        for d in range(1, last_day_of_month(year, month) + 1)
        if date(year, month, d).weekday() == weekday
    ]
    if nth == "last" or nth > len(occurrences):
        return occurrences[-1]
    return occurrences[nth - 1]


def calculate_specific_date(month: int, day: int, start: date) -> date:
    """Next ``month``/``day`` on or after ``start``; clamps short months (Feb 29 becomes Feb 28)."""

    def _for_year(year: int) -> date:
        return date(year, month, min(day, last_day_of_month(year, month)))

    if (month, day) < (start.month, start.day):
        return _for_year(start.year + 1)
    return _for_year(start.year)


def calculate_relative_date(
    option: str,
    reference: date,
    *,
    specific_month: int | None = None,
    specific_day: int | None = None,
    month_target: MonthTarget | None = None,
) -> date:
    """Resolve a relative date option against ``reference``."""
    if option == "today":
        return reference
    if option == "tomorrow":
        return reference + timedelta(days=1)
    if option == "next_working_day":
        return calculate_working_days(1, reference)
    if option == "last_day_of_month":
        return calculate_day_of_month("last", month_target, reference)
    if option == "last_working_day_of_month":
        return calculate_day_of_month("last_working", month_target, reference)
    if option == "specific_date":
        if not specific_month or not specific_day:
            raise ValueError("specific_date requires specific_month and specific_day")
        return calculate_specific_date(specific_month, specific_day, reference)

    match = _DAY_OF_MONTH_RE.match(option)
    if match and 1 <= int(match.group(1)) <= 31:
        return calculate_day_of_month(int(match.group(1)), month_target, reference)

    match = _IN_DAYS_RE.match(option)
    if match:
        count = int(match.group(1))
        if match.group(2) == "working_days":
            return calculate_working_days(count, reference)
        return reference + timedelta(days=count)

    # next_week_<day> must be tried before next_<day>
    match = _NEXT_WEEK_ON_RE.match(option)
    if match and match.group(1) in WEEKDAYS:
        return calculate_next_week_on(WEEKDAYS[match.group(1)], reference)

    match = _NEXT_WEEKDAY_RE.match(option)
    if match and match.group(1) in WEEKDAYS:
        return calculate_next_weekday(WEEKDAYS[match.group(1)], reference)

    match = _NTH_WEEKDAY_RE.match(option)
    if match and match.group(1) in ORDINALS and match.group(2) in WEEKDAYS:
        return calculate_nth_weekday_of_month(
            ORDINALS[match.group(1)], WEEKDAYS[match.group(2)], month_target, reference
        )

    raise UnknownDateOptionError(option)


def is_valid_date_option(option: str) -> bool:
    if option in _SIMPLE_OPTIONS:
        return True
    match = _DAY_OF_MONTH_RE.match(option)
    if match:
        return 1 <= int(match.group(1)) <= 31
    if _IN_DAYS_RE.match(option):
        return True
    match = _NEXT_WEEK_ON_RE.match(option)
    if match and match.group(1) in WEEKDAYS:
        return True
    match = _NEXT_WEEKDAY_RE.match(option)
    if match and match.group(1) in WEEKDAYS:
        return True
    match = _NTH_WEEKDAY_RE.match(option)
    return bool(match and match.group(1) in ORDINALS and match.group(2) in WEEKDAYS)
