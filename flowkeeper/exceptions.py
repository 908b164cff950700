"""Exceptions raised by the automation engine.

Expected outcomes (cron parse failures, cascade truncation, expired undo,
leadership contention) are returned as values and never raised.
"""


class FlowkeeperError(Exception):
    """Base exception for automation engine failures."""

    pass


class UnknownActionTypeError(FlowkeeperError):
    """Raised when no handler is registered for an action type."""

    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class UnknownFilterTypeError(FlowkeeperError):
    """Raised when a filter type has no predicate."""

    def __init__(self, filter_type: str) -> None:
        self.filter_type = filter_type
        super().__init__(f"Unknown filter type: {filter_type}")


class UnknownDateOptionError(FlowkeeperError):
    """Raised when a relative date option cannot be interpreted."""

    def __init__(self, option: str) -> None:
        self.option = option
        super().__init__(f"Unknown relative date option: {option}")


class RuleNotFoundError(FlowkeeperError):
    """Raised when an operation names a rule that does not exist."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' not found")


class EntityNotFoundError(FlowkeeperError):
    """Raised when an action targets a task or section that does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} '{entity_id}' not found")
