"""Rule evaluation: filters, date arithmetic and event matching."""

from flowkeeper.evaluation.dates import (
    calculate_relative_date,
    calculate_working_days,
    count_working_days_between,
    is_valid_date_option,
    is_working_day,
)
from flowkeeper.evaluation.engine import EvaluationContext, RuleAction, evaluate_rules
from flowkeeper.evaluation.filters import FilterContext, evaluate_filter, evaluate_filters

__all__ = [
    "EvaluationContext",
    "FilterContext",
    "RuleAction",
    "calculate_relative_date",
    "calculate_working_days",
    "count_working_days_between",
    "evaluate_filter",
    "evaluate_filters",
    "evaluate_rules",
    "is_valid_date_option",
    "is_working_day",
]
