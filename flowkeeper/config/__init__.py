"""Configuration package for flowkeeper."""

from flowkeeper.config.loader import ConfigLoadError, YAMLConfigLoader, load_config
from flowkeeper.config.models import (
    DedupConfig,
    EngineConfig,
    ExecutionLogConfig,
    FlowkeeperConfig,
    LeaderConfig,
    SchedulerConfig,
    UndoConfig,
)

__all__ = [
    "ConfigLoadError",
    "DedupConfig",
    "EngineConfig",
    "ExecutionLogConfig",
    "FlowkeeperConfig",
    "LeaderConfig",
    "SchedulerConfig",
    "UndoConfig",
    "YAMLConfigLoader",
    "load_config",
]
