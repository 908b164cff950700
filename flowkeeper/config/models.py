"""Configuration models for flowkeeper."""

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseModel):
    """Cascade loop limits."""

    max_cascade_depth: int = Field(default=5, ge=1, le=20)


class SchedulerConfig(BaseModel):
    """Scheduler tick configuration."""

    tick_interval_seconds: float = Field(default=60.0, gt=0)
    stale_tick_multiplier: int = Field(default=2, ge=1)
    due_date_first_lookback_seconds: int = Field(default=60, ge=1)
    timezone: str = Field(default="UTC", description="Zone used for cron and calendar arithmetic.")

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class LeaderConfig(BaseModel):
    """Heartbeat-based leader election timing."""

    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    heartbeat_timeout_seconds: float = Field(default=60.0, gt=0)
    claim_window_seconds: float = Field(default=2.0, ge=0)

    @model_validator(mode="after")
    def _timeout_exceeds_interval(self) -> "LeaderConfig":
        if self.heartbeat_timeout_seconds <= self.heartbeat_interval_seconds:
            raise ValueError("heartbeat_timeout_seconds must exceed heartbeat_interval_seconds")
        return self


class UndoConfig(BaseModel):
    """Undo snapshot lifetime."""

    expiry_seconds: float = Field(default=10.0, gt=0)


class ExecutionLogConfig(BaseModel):
    """Per-rule execution log bounds."""

    max_entries: int = Field(default=20, ge=1)
    max_details: int = Field(default=10, ge=1)


class DedupConfig(BaseModel):
    """Lookback windows for duplicate card detection."""

    default_lookback_minutes: int = Field(default=4, ge=1)
    event_lookback_hours: int = Field(default=24, ge=1)


class FlowkeeperConfig(BaseSettings):
    """Root configuration model for flowkeeper."""

    engine: EngineConfig = Field(default_factory=EngineConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    leader: LeaderConfig = Field(default_factory=LeaderConfig)
    undo: UndoConfig = Field(default_factory=UndoConfig)
    execution_log: ExecutionLogConfig = Field(default_factory=ExecutionLogConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)

    model_config = SettingsConfigDict(
        env_prefix="FLOWKEEPER_",
        env_nested_delimiter="__",
        extra="ignore",
    )
