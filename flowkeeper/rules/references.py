"""Section references held by a rule, and breakage when a section goes away."""

from __future__ import annotations

import logging

from flowkeeper.rules.models import TRIGGER_SECTION_SENTINEL, AutomationRule, BrokenReason, SectionFilter
from flowkeeper.rules.repository import RuleRepository

logger = logging.getLogger(__name__)


def collect_section_references(rule: AutomationRule) -> list[str]:
    """Section ids the rule's trigger, action and section filters depend on."""
    refs: list[str] = []
    if rule.trigger.section_id:
        refs.append(rule.trigger.section_id)
    if rule.action.section_id and rule.action.section_id != TRIGGER_SECTION_SENTINEL:
        refs.append(rule.action.section_id)
    refs.extend(f.section_id for f in rule.filters if isinstance(f, SectionFilter))
    return refs


def detect_broken_rules(deleted_section_id: str, project_id: str, rule_repo: RuleRepository) -> list[str]:
    """Disable every rule of ``project_id`` that references the deleted section."""
    broken: list[str] = []
    for rule in rule_repo.find_by_project_id(project_id):
        if deleted_section_id in collect_section_references(rule):
            rule_repo.update(rule.id, enabled=False, broken_reason=BrokenReason.SECTION_DELETED)
            broken.append(rule.id)
    if broken:
        logger.warning("Section %s deleted; disabled rules %s", deleted_section_id, ", ".join(broken))
    return broken
