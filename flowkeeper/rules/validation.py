"""Save-time checks on rule edits."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from flowkeeper.rules.models import OneTimeTrigger

PAST_FIRE_AT_ERROR = "Update the fire date to a future time before re-enabling this rule."


def validate_one_time_re_enable(trigger: Any, enabled: bool, now: datetime) -> str | None:
    """Error message when a one-time rule would be enabled with its fire time already past."""
    if not isinstance(trigger, OneTimeTrigger) or not enabled:
        return None
    if trigger.schedule.fire_at < now:
        return PAST_FIRE_AT_ERROR
    return None
