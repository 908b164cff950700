"""Duplicate suppression for cards created by scheduled rules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from flowkeeper.config.models import DedupConfig
from flowkeeper.domain.models import Task
from flowkeeper.rules.models import AutomationRule, IntervalTrigger


def get_lookback_window(rule: AutomationRule | None, config: DedupConfig | None = None) -> timedelta:
    """How far back an identical card blocks a new one.

    Interval rules use one tick less than their period so the next legitimate
    fire is never blocked; an unknown rule gets the short default window and
    everything else uses a day.
    """
    config = config or DedupConfig()
    if rule is None:
        return timedelta(minutes=config.default_lookback_minutes)
    if isinstance(rule.trigger, IntervalTrigger):
        minutes = rule.trigger.schedule.interval_minutes - 1
        return max(timedelta(minutes=minutes), timedelta(minutes=1))
    return timedelta(hours=config.event_lookback_hours)


def is_duplicate_card(
    title: str,
    section_id: str,
    tasks: Iterable[Task],
    now: datetime,
    lookback: timedelta,
) -> bool:
    return any(
        task.description == title and task.section_id == section_id and now - task.created_at < lookback
        for task in tasks
    )
