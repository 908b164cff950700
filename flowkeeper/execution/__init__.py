"""Action execution: handlers, executor bookkeeping, undo and notifications."""

from flowkeeper.execution.executor import AppliedAction, RuleExecutor
from flowkeeper.execution.handlers import ActionContext, get_action_handler
from flowkeeper.execution.notifications import CollectingSink, ExecutionSummary, NotificationSink
from flowkeeper.execution.undo import UndoService, UndoSnapshot

__all__ = [
    "ActionContext",
    "AppliedAction",
    "CollectingSink",
    "ExecutionSummary",
    "NotificationSink",
    "RuleExecutor",
    "UndoService",
    "UndoSnapshot",
    "get_action_handler",
]
