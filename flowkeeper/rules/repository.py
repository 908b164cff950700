"""Rule persistence contract, in-memory store and its replicated wrapper."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Iterable, Protocol

from flowkeeper.rules.models import AutomationRule
from flowkeeper.sync.channel import StateUpdate, SyncChannel, UpdateOp

logger = logging.getLogger(__name__)

RULES_COLLECTION = "automation_rules"


class RuleRepository(Protocol):
    def find_by_id(self, rule_id: str) -> AutomationRule | None: ...

    def find_all(self) -> list[AutomationRule]: ...

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]: ...

    def create(self, rule: AutomationRule) -> AutomationRule: ...

    def update(self, rule_id: str, **changes: Any) -> AutomationRule | None: ...

    def delete(self, rule_id: str) -> bool: ...

    def replace_all(self, rules: Iterable[AutomationRule]) -> None: ...


class InMemoryRuleRepository:
    """Ordered rule store. Reads return deep copies."""

    def __init__(self, rules: Iterable[AutomationRule] = ()) -> None:
        self._rules: dict[str, AutomationRule] = {r.id: r.model_copy(deep=True) for r in rules}
        self._lock = Lock()

    def find_by_id(self, rule_id: str) -> AutomationRule | None:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule is not None else None

    def find_all(self) -> list[AutomationRule]:
        return [r.model_copy(deep=True) for r in self._rules.values()]

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]:
        rules = [r for r in self._rules.values() if r.project_id == project_id]
        rules.sort(key=lambda r: r.order)
        return [r.model_copy(deep=True) for r in rules]

    def create(self, rule: AutomationRule) -> AutomationRule:
        """Store ``rule``, replacing any rule with the same id."""
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)
        return rule.model_copy(deep=True)

    def update(self, rule_id: str, **changes: Any) -> AutomationRule | None:
        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._rules[rule_id] = updated
        return updated.model_copy(deep=True)

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def replace_all(self, rules: Iterable[AutomationRule]) -> None:
        with self._lock:
            self._rules = {r.id: r.model_copy(deep=True) for r in rules}


class ReplicatedRuleRepository:
    """Rule store whose writes are mirrored to other instances over a ``SyncChannel``.

    Local writes go to the wrapped store and are published; updates from other
    instances are applied to the wrapped store without being republished.
    """

    def __init__(self, inner: RuleRepository, channel: SyncChannel) -> None:
        self._inner = inner
        self._channel = channel
        self._unsubscribe = channel.on_remote_update(self._apply_remote)

    def find_by_id(self, rule_id: str) -> AutomationRule | None:
        return self._inner.find_by_id(rule_id)

    def find_all(self) -> list[AutomationRule]:
        return self._inner.find_all()

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]:
        return self._inner.find_by_project_id(project_id)

    def create(self, rule: AutomationRule) -> AutomationRule:
        created = self._inner.create(rule)
        self._publish(UpdateOp.UPSERT, created.id, created.to_persisted())
        return created

    def update(self, rule_id: str, **changes: Any) -> AutomationRule | None:
        updated = self._inner.update(rule_id, **changes)
        if updated is not None:
            self._publish(UpdateOp.UPSERT, updated.id, updated.to_persisted())
        return updated

    def delete(self, rule_id: str) -> bool:
        removed = self._inner.delete(rule_id)
        if removed:
            self._publish(UpdateOp.DELETE, rule_id, None)
        return removed

    def replace_all(self, rules: Iterable[AutomationRule]) -> None:
        materialized = list(rules)
        self._inner.replace_all(materialized)
        self._publish(UpdateOp.REPLACE_ALL, None, [r.to_persisted() for r in materialized])

    def close(self) -> None:
        self._unsubscribe()

    def _publish(self, op: UpdateOp, key: str | None, payload: Any) -> None:
        self._channel.apply(
            StateUpdate(
                origin=self._channel.instance_id,
                collection=RULES_COLLECTION,
                op=op,
                key=key,
                payload=payload,
            )
        )

    def _apply_remote(self, update: StateUpdate) -> None:
        if update.collection != RULES_COLLECTION:
            return
        if update.op is UpdateOp.DELETE and update.key is not None:
            self._inner.delete(update.key)
        elif update.op is UpdateOp.UPSERT:
            self._inner.create(AutomationRule.model_validate(update.payload))
        elif update.op is UpdateOp.REPLACE_ALL:
            self._inner.replace_all(AutomationRule.model_validate(item) for item in update.payload or [])
        logger.debug("Applied remote %s for rule %s from %s", update.op.value, update.key, update.origin)
