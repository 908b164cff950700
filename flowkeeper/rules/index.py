"""Trigger-type index over active rules."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from flowkeeper.rules.models import AutomationRule, TriggerType


class RuleIndex:
    """Maps trigger type to the active rules that carry it, in input order."""

    def __init__(self, rules: Iterable[AutomationRule]) -> None:
        self._by_type: dict[str, list[AutomationRule]] = defaultdict(list)
        for rule in rules:
            if rule.is_active:
                self._by_type[str(rule.trigger.type)].append(rule)

    def get(self, trigger_type: TriggerType | str) -> list[AutomationRule]:
        key = trigger_type.value if isinstance(trigger_type, TriggerType) else trigger_type
        return list(self._by_type.get(key, ()))

    def __len__(self) -> int:
        return sum(len(rules) for rules in self._by_type.values())

    def __contains__(self, trigger_type: object) -> bool:
        key = trigger_type.value if isinstance(trigger_type, TriggerType) else trigger_type
        return bool(self._by_type.get(key))  # type: ignore[arg-type]


def build_rule_index(rules: Iterable[AutomationRule]) -> RuleIndex:
    return RuleIndex(rules)
