"""Portable rule export and partial-success import."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from flowkeeper.evaluation.dates import is_valid_date_option
from flowkeeper.rules.models import (
    AutomationRule,
    BrokenReason,
    TriggerType,
    UnsupportedTrigger,
    is_scheduled_trigger,
)
from flowkeeper.rules.references import collect_section_references
from flowkeeper.scheduling.cron import parse_cron_expression

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass(slots=True)
class ImportRowError:
    index: int
    message: str
    rule_id: str | None = None


@dataclass(slots=True)
class ImportReport:
    rules: list[AutomationRule] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return len(self.rules)

    @property
    def broken_count(self) -> int:
        return sum(1 for rule in self.rules if rule.broken_reason is not None)


def export_rules(rules: Iterable[AutomationRule]) -> dict[str, Any]:
    return {
        "schemaVersion": SCHEMA_VERSION,
        "rules": [rule.to_persisted() for rule in rules],
    }


def import_rules(payload: Mapping[str, Any] | list[Any], available_section_ids: Iterable[str]) -> ImportReport:
    """Validate an exported payload against the sections that exist here.

    A rule is never rejected for integrity problems: an unknown trigger type
    or a dangling section reference disables it with a ``broken_reason``.
    Rows that fail schema validation are reported and dropped.
    """
    report = ImportReport()
    rules, report.errors, report.warnings = load_rules(payload)
    sections = set(available_section_ids)
    report.rules = [_check_integrity(rule, sections) for rule in rules]

    logger.info(
        "Imported %d rule(s), %d broken, %d rejected",
        report.imported_count,
        report.broken_count,
        len(report.errors),
    )
    return report


def load_rules(payload: Mapping[str, Any] | list[Any]) -> tuple[list[AutomationRule], list[ImportRowError], list[str]]:
    """Schema-validate every row; no section or trigger integrity checks."""
    rules: list[AutomationRule] = []
    errors: list[ImportRowError] = []
    warnings: list[str] = []
    if isinstance(payload, Mapping):
        version = payload.get("schemaVersion", payload.get("schema_version"))
        if version != SCHEMA_VERSION:
            warnings.append(f"Schema version {version!r} differs from {SCHEMA_VERSION}; importing anyway")
        rows = payload.get("rules", [])
    else:
        rows = payload
    if not isinstance(rows, list):
        errors.append(ImportRowError(-1, "'rules' must be a list"))
        return rules, errors, warnings

    for index, row in enumerate(rows):
        rule_id = row.get("id") if isinstance(row, Mapping) else None
        try:
            rules.append(_parse_row(row))
        except (ValidationError, ValueError, TypeError) as exc:
            errors.append(ImportRowError(index, _format_error(exc), rule_id))
    return rules, errors, warnings


def _parse_row(row: Any) -> AutomationRule:
    if not isinstance(row, Mapping):
        raise TypeError("rule entry must be an object")
    data = dict(row)
    trigger = data.get("trigger")
    if isinstance(trigger, Mapping) and trigger.get("type") == TriggerType.SCHEDULED_CRON.value:
        data["trigger"] = _expand_cron_expression(trigger)
    rule = AutomationRule.model_validate(data)
    for option in (rule.action.date_option, rule.action.card_date_option):
        if option is not None and not is_valid_date_option(option):
            raise ValueError(f"Unknown date option '{option}'")
    return rule


def _expand_cron_expression(trigger: Mapping[str, Any]) -> dict[str, Any]:
    expanded = dict(trigger)
    expression = expanded.pop("expression", None)
    if expression is None:
        return expanded
    result = parse_cron_expression(str(expression))
    if not result.success or result.schedule is None:
        raise ValueError(f"Invalid cron expression ({result.field or 'expression'}): {result.error}")
    expanded["schedule"] = result.schedule.model_dump(by_alias=True)
    return expanded


def _check_integrity(rule: AutomationRule, sections: set[str]) -> AutomationRule:
    if isinstance(rule.trigger, UnsupportedTrigger):
        return rule.model_copy(update={"enabled": False, "broken_reason": BrokenReason.UNSUPPORTED_TRIGGER})
    if is_scheduled_trigger(rule.trigger):
        rule = rule.model_copy(update={"trigger": rule.trigger.model_copy(update={"last_evaluated_at": None})})
    if any(ref not in sections for ref in collect_section_references(rule)):
        return rule.model_copy(update={"enabled": False, "broken_reason": BrokenReason.SECTION_DELETED})
    return rule


def _format_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return f"{location}: {first['msg']}" if location else first["msg"]
    return str(exc)
