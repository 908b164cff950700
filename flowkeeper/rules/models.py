"""Automation rule models.

Rules persist as camelCase JSON. Every model accepts both the alias and the
Python field name, and ``AutomationRule.to_persisted()`` produces the stored
shape.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

TRIGGER_SECTION_SENTINEL = "__trigger_section__"


class FlowModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class TriggerType(str, Enum):
    CARD_MOVED_INTO_SECTION = "card_moved_into_section"
    CARD_MOVED_OUT_OF_SECTION = "card_moved_out_of_section"
    CARD_MARKED_COMPLETE = "card_marked_complete"
    CARD_MARKED_INCOMPLETE = "card_marked_incomplete"
    CARD_CREATED_IN_SECTION = "card_created_in_section"
    SECTION_CREATED = "section_created"
    SECTION_RENAMED = "section_renamed"
    SCHEDULED_INTERVAL = "scheduled_interval"
    SCHEDULED_CRON = "scheduled_cron"
    SCHEDULED_DUE_DATE_RELATIVE = "scheduled_due_date_relative"
    SCHEDULED_ONE_TIME = "scheduled_one_time"


EVENT_TRIGGER_TYPES = frozenset(t.value for t in TriggerType if not t.value.startswith("scheduled_"))
SCHEDULED_TRIGGER_TYPES = frozenset(t.value for t in TriggerType if t.value.startswith("scheduled_"))


class CatchUpPolicy(str, Enum):
    CATCH_UP_LATEST = "catch_up_latest"
    SKIP_MISSED = "skip_missed"


class BrokenReason(str, Enum):
    UNSUPPORTED_TRIGGER = "unsupported_trigger"
    SECTION_DELETED = "section_deleted"


class ExecutionType(str, Enum):
    SCHEDULED = "scheduled"
    CATCH_UP = "catch-up"
    MANUAL = "manual"
    SKIPPED = "skipped"


# --- schedules ---------------------------------------------------------------


class IntervalSchedule(FlowModel):
    kind: Literal["interval"] = "interval"
    interval_minutes: int = Field(ge=5, le=10080)


class CronSchedule(FlowModel):
    """Structured cron: one hour/minute, optional day sets (empty means every day)."""

    kind: Literal["cron"] = "cron"
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)
    days_of_week: list[int] = Field(default_factory=list)
    days_of_month: list[int] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def _check_days_of_week(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week values must be 0-6")
        return sorted(set(value))

    @field_validator("days_of_month")
    @classmethod
    def _check_days_of_month(cls, value: list[int]) -> list[int]:
        if any(day < 1 or day > 31 for day in value):
            raise ValueError("days_of_month values must be 1-31")
        return sorted(set(value))


class DueDateRelativeSchedule(FlowModel):
    kind: Literal["due_date_relative"] = "due_date_relative"
    offset_minutes: int = Field(ge=-525600, le=525600)
    display_unit: Literal["minutes", "hours", "days"] | None = None


class OneTimeSchedule(FlowModel):
    kind: Literal["one_time"] = "one_time"
    fire_at: UtcDatetime


# --- triggers ----------------------------------------------------------------


class EventTrigger(FlowModel):
    type: Literal[
        "card_moved_into_section",
        "card_moved_out_of_section",
        "card_marked_complete",
        "card_marked_incomplete",
        "card_created_in_section",
        "section_created",
        "section_renamed",
    ]
    section_id: str | None = None

    @property
    def is_scheduled(self) -> bool:
        return False


class _ScheduledTrigger(FlowModel):
    section_id: str | None = None
    last_evaluated_at: UtcDatetime | None = None

    @property
    def is_scheduled(self) -> bool:
        return True


class IntervalTrigger(_ScheduledTrigger):
    type: Literal["scheduled_interval"] = "scheduled_interval"
    schedule: IntervalSchedule
    catch_up_policy: CatchUpPolicy = CatchUpPolicy.CATCH_UP_LATEST


class CronTrigger(_ScheduledTrigger):
    type: Literal["scheduled_cron"] = "scheduled_cron"
    schedule: CronSchedule
    catch_up_policy: CatchUpPolicy = CatchUpPolicy.CATCH_UP_LATEST


class DueDateRelativeTrigger(_ScheduledTrigger):
    type: Literal["scheduled_due_date_relative"] = "scheduled_due_date_relative"
    schedule: DueDateRelativeSchedule
    catch_up_policy: CatchUpPolicy = CatchUpPolicy.CATCH_UP_LATEST


class OneTimeTrigger(_ScheduledTrigger):
    type: Literal["scheduled_one_time"] = "scheduled_one_time"
    schedule: OneTimeSchedule

    @property
    def catch_up_policy(self) -> CatchUpPolicy:
        return CatchUpPolicy.CATCH_UP_LATEST


class UnsupportedTrigger(FlowModel):
    """A trigger type this engine does not know; kept verbatim so it can be exported again."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    section_id: str | None = None

    @property
    def is_scheduled(self) -> bool:
        return False


def _trigger_tag(value: Any) -> str:
    trigger_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if isinstance(trigger_type, Enum):
        trigger_type = trigger_type.value
    if trigger_type in EVENT_TRIGGER_TYPES:
        return "event"
    if trigger_type in SCHEDULED_TRIGGER_TYPES:
        return str(trigger_type)
    return "unsupported"


ScheduledTrigger = Union[IntervalTrigger, CronTrigger, DueDateRelativeTrigger, OneTimeTrigger]

Trigger = Annotated[
    Union[
        Annotated[EventTrigger, Tag("event")],
        Annotated[IntervalTrigger, Tag("scheduled_interval")],
        Annotated[CronTrigger, Tag("scheduled_cron")],
        Annotated[DueDateRelativeTrigger, Tag("scheduled_due_date_relative")],
        Annotated[OneTimeTrigger, Tag("scheduled_one_time")],
        Annotated[UnsupportedTrigger, Tag("unsupported")],
    ],
    Discriminator(_trigger_tag),
]


# --- filters -----------------------------------------------------------------


class SectionFilter(FlowModel):
    type: Literal["in_section", "not_in_section"]
    section_id: str = Field(min_length=1)


class DueDatePresenceFilter(FlowModel):
    type: Literal["has_due_date", "no_due_date"]


class DueDateRangeFilter(FlowModel):
    type: Literal[
        "is_overdue",
        "due_today",
        "due_tomorrow",
        "due_this_week",
        "due_next_week",
        "due_this_month",
        "due_next_month",
        "not_due_today",
        "not_due_tomorrow",
        "not_due_this_week",
        "not_due_next_week",
        "not_due_this_month",
        "not_due_next_month",
    ]


class DueDateComparisonFilter(FlowModel):
    type: Literal["due_in_less_than", "due_in_more_than", "due_in_exactly"]
    value: int = Field(ge=0, le=3650)
    unit: Literal["days", "working_days"] = "days"


class DueDateBetweenFilter(FlowModel):
    type: Literal["due_in_between"] = "due_in_between"
    min_value: int = Field(ge=0, le=3650)
    max_value: int = Field(ge=0, le=3650)
    unit: Literal["days", "working_days"] = "days"

    @model_validator(mode="after")
    def _ordered(self) -> "DueDateBetweenFilter":
        if self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        return self


class AgeFilter(FlowModel):
    type: Literal[
        "created_more_than",
        "completed_more_than",
        "last_updated_more_than",
        "not_modified_in",
        "overdue_by_more_than",
        "in_section_for_more_than",
    ]
    value: int = Field(ge=0, le=3650)
    unit: Literal["days"] = "days"


CardFilter = Annotated[
    Union[
        SectionFilter,
        DueDatePresenceFilter,
        DueDateRangeFilter,
        DueDateComparisonFilter,
        DueDateBetweenFilter,
        AgeFilter,
    ],
    Field(discriminator="type"),
]


# --- actions -----------------------------------------------------------------


class ActionType(str, Enum):
    MOVE_CARD_TO_TOP_OF_SECTION = "move_card_to_top_of_section"
    MOVE_CARD_TO_BOTTOM_OF_SECTION = "move_card_to_bottom_of_section"
    MARK_CARD_COMPLETE = "mark_card_complete"
    MARK_CARD_INCOMPLETE = "mark_card_incomplete"
    SET_DUE_DATE = "set_due_date"
    REMOVE_DUE_DATE = "remove_due_date"
    CREATE_CARD = "create_card"


_SECTION_ACTIONS = {
    ActionType.MOVE_CARD_TO_TOP_OF_SECTION,
    ActionType.MOVE_CARD_TO_BOTTOM_OF_SECTION,
    ActionType.CREATE_CARD,
}


class RuleActionConfig(FlowModel):
    """What a rule does once it matches. Interpreted by the action handlers."""

    type: ActionType
    section_id: str | None = None
    date_option: str | None = None
    position: Literal["top", "bottom"] | None = None
    card_title: str | None = Field(default=None, max_length=200)
    card_date_option: str | None = None
    specific_month: int | None = Field(default=None, ge=1, le=12)
    specific_day: int | None = Field(default=None, ge=1, le=31)
    month_target: Literal["this_month", "next_month"] | None = None

    @model_validator(mode="after")
    def _required_params(self) -> "RuleActionConfig":
        if self.type in _SECTION_ACTIONS and not self.section_id:
            raise ValueError(f"{self.type.value} requires section_id")
        if self.type is ActionType.CREATE_CARD and not (self.card_title or "").strip():
            raise ValueError("create_card requires card_title")
        if self.type is ActionType.SET_DUE_DATE and not self.date_option:
            raise ValueError("set_due_date requires date_option")
        return self


# --- rule --------------------------------------------------------------------


class ExecutionLogEntry(FlowModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: UtcDatetime
    trigger_description: str
    action_description: str
    task_name: str
    match_count: int | None = None
    details: list[str] = Field(default_factory=list)
    execution_type: ExecutionType | None = None


class AutomationRule(FlowModel):
    id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    trigger: Trigger
    filters: list[CardFilter] = Field(default_factory=list)
    action: RuleActionConfig
    enabled: bool = True
    broken_reason: BrokenReason | None = None
    execution_count: int = Field(default=0, ge=0)
    last_executed_at: UtcDatetime | None = None
    recent_executions: list[ExecutionLogEntry] = Field(default_factory=list)
    order: float = 0
    bulk_paused_at: UtcDatetime | None = None
    created_at: UtcDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: UtcDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        """Enabled and not broken: the only rules any evaluation considers."""
        return self.enabled and self.broken_reason is None

    @property
    def is_scheduled(self) -> bool:
        return self.trigger.is_scheduled

    def with_log_entry(self, entry: ExecutionLogEntry, limit: int = 20) -> list[ExecutionLogEntry]:
        """Log with ``entry`` appended, keeping only the newest ``limit`` entries."""
        return [*self.recent_executions, entry][-limit:]

    def to_persisted(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def is_scheduled_trigger(trigger: Any) -> bool:
    return isinstance(trigger, (IntervalTrigger, CronTrigger, DueDateRelativeTrigger, OneTimeTrigger))
