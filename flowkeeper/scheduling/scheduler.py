"""Periodic tick driving scheduled automation rules."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Sequence

from flowkeeper.clock import Clock
from flowkeeper.config.models import SchedulerConfig
from flowkeeper.domain.models import Task
from flowkeeper.domain.repositories import TaskRepository
from flowkeeper.exceptions import RuleNotFoundError
from flowkeeper.execution.notifications import ExecutionSummary, format_tick_summary
from flowkeeper.rules.models import (
    AutomationRule,
    CatchUpPolicy,
    ExecutionLogEntry,
    ExecutionType,
    IntervalTrigger,
    OneTimeTrigger,
    is_scheduled_trigger,
)
from flowkeeper.rules.repository import RuleRepository
from flowkeeper.scheduling.evaluator import ScheduleEvaluation, ScheduledFiring, evaluate_scheduled_rules
from flowkeeper.scheduling.leader import LeaderElection, LeaderState, StateTransition

logger = logging.getLogger(__name__)

RuleFiredCallback = Callable[[AutomationRule, ScheduleEvaluation, ExecutionType], "ExecutionSummary | None"]
TickCompleteCallback = Callable[["TickSummary"], None]


@dataclass(slots=True)
class TickSummary:
    at: datetime
    is_catch_up: bool = False
    dry_run: bool = False
    rules_evaluated: int = 0
    rules_fired: int = 0
    tasks_affected: int = 0
    fired_rule_ids: list[str] = field(default_factory=list)
    skipped_rule_ids: list[str] = field(default_factory=list)
    summaries: list[ExecutionSummary] = field(default_factory=list)

    @property
    def message(self) -> str:
        return format_tick_summary(self.rules_fired, self.tasks_affected, is_catch_up=self.is_catch_up)


class SchedulerService:
    """Evaluates every scheduled rule once per tick and hands firings to a callback.

    ``last_evaluated_at`` is persisted before the callback runs, so a crash in
    the callback cannot cause a second firing for the same window. With a
    ``LeaderElection`` attached, only the leader mutates anything; every other
    instance evaluates as a dry run.
    """

    def __init__(
        self,
        clock: Clock,
        rule_repo: RuleRepository,
        task_repo: TaskRepository,
        on_rule_fired: RuleFiredCallback,
        on_tick_complete: TickCompleteCallback | None = None,
        *,
        leader: LeaderElection | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self._clock = clock
        self._rule_repo = rule_repo
        self._task_repo = task_repo
        self._on_rule_fired = on_rule_fired
        self._on_tick_complete = on_tick_complete
        self._config = config or SchedulerConfig()
        self._leader = leader
        self._catch_up_pending = False
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        if leader is not None:
            leader.on_transition(self._on_leader_transition)

    @property
    def is_leader(self) -> bool:
        return self._leader is None or self._leader.is_leader

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def tick(self, is_catch_up: bool = False) -> TickSummary | None:
        """One evaluation pass. Returns ``None`` when the repositories failed."""
        try:
            rules = self._rule_repo.find_all()
            tasks = self._task_repo.find_all()
        except Exception:
            logger.exception("Scheduler tick skipped: repository read failed")
            return None

        if self._catch_up_pending and self.is_leader:
            is_catch_up = True
            self._catch_up_pending = False

        now = self._clock.now()
        firings = self._evaluate(now, rules, tasks)
        summary = TickSummary(
            at=now,
            is_catch_up=is_catch_up,
            dry_run=not self.is_leader,
            rules_evaluated=sum(1 for r in rules if r.is_active and is_scheduled_trigger(r.trigger)),
        )
        if summary.dry_run:
            summary.fired_rule_ids = [f.rule.id for f in firings]
            logger.debug("Follower tick: %d rule(s) due, no mutation", len(firings))
            return summary

        for firing in firings:
            self._fire(firing, summary)

        self._update_non_fired_rules(rules, {f.rule.id for f in firings}, now)

        if firings and self._on_tick_complete is not None:
            try:
                self._on_tick_complete(summary)
            except Exception:
                logger.exception("Tick-complete callback failed")
        return summary

    def evaluate_single_rule(self, rule_id: str) -> ExecutionSummary | None:
        """Run Now: fire ``rule_id`` regardless of its schedule."""
        rule = self._rule_repo.find_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if not is_scheduled_trigger(rule.trigger):
            logger.info("Rule %s is not scheduled; Run Now ignored", rule_id)
            return None
        now = self._clock.now()
        self._set_last_evaluated_at(rule.id, now)
        return self._on_rule_fired(rule, ScheduleEvaluation(True, now, missed_count=1), ExecutionType.MANUAL)

    async def start(self) -> None:
        async with self._lock:
            if self._task is not None:
                return
            self.tick(is_catch_up=True)
            self._task = asyncio.create_task(self._run(), name="flowkeeper-scheduler")

    async def stop(self) -> None:
        async with self._lock:
            if self._task is None:
                return
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    def resume(self) -> TickSummary | None:
        """Catch-up tick for when the host comes back to the foreground."""
        return self.tick(is_catch_up=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._config.tick_interval_seconds)
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")

    def _evaluate(self, now: datetime, rules: Sequence[AutomationRule], tasks: Sequence[Task]) -> list[ScheduledFiring]:
        return evaluate_scheduled_rules(
            now,
            rules,
            tasks,
            tz=self._config.tzinfo,
            first_lookback=timedelta(seconds=self._config.due_date_first_lookback_seconds),
        )

    def _fire(self, firing: ScheduledFiring, summary: TickSummary) -> None:
        rule, evaluation = firing.rule, firing.evaluation
        try:
            self._set_last_evaluated_at(rule.id, evaluation.new_last_evaluated_at)
        except Exception:
            logger.exception("Failed to persist lastEvaluatedAt for rule %s", rule.id)

        if summary.is_catch_up and rule.trigger.catch_up_policy is CatchUpPolicy.SKIP_MISSED:
            self._push_skipped_entry(rule.id, summary.at)
            summary.skipped_rule_ids.append(rule.id)
            return

        execution_type = (
            ExecutionType.CATCH_UP if summary.is_catch_up or evaluation.collapsed else ExecutionType.SCHEDULED
        )
        result: ExecutionSummary | None = None
        try:
            result = self._on_rule_fired(rule, evaluation, execution_type)
        except Exception:
            logger.exception("Scheduled rule %s callback failed", rule.id)

        if isinstance(rule.trigger, OneTimeTrigger):
            try:
                self._rule_repo.update(rule.id, enabled=False)
            except Exception:
                logger.exception("Failed to disable one-time rule %s", rule.id)

        summary.rules_fired += 1
        summary.fired_rule_ids.append(rule.id)
        if result is not None:
            summary.summaries.append(result)
            summary.tasks_affected += result.action_count
        else:
            summary.tasks_affected += len(evaluation.matching_task_ids or ()) or 1

    def _set_last_evaluated_at(self, rule_id: str, value: datetime) -> None:
        rule = self._rule_repo.find_by_id(rule_id)
        if rule is None or not is_scheduled_trigger(rule.trigger):
            return
        self._rule_repo.update(rule_id, trigger=rule.trigger.model_copy(update={"last_evaluated_at": value}))

    def _push_skipped_entry(self, rule_id: str, now: datetime) -> None:
        rule = self._rule_repo.find_by_id(rule_id)
        if rule is None:
            return
        entry = ExecutionLogEntry(
            timestamp=now,
            trigger_description="Skipped (catch-up)",
            action_description="Catch-up suppressed by skip_missed policy",
            task_name="",
            execution_type=ExecutionType.SKIPPED,
        )
        self._rule_repo.update(rule_id, recent_executions=rule.with_log_entry(entry))

    def _update_non_fired_rules(self, rules: Sequence[AutomationRule], fired: set[str], now: datetime) -> None:
        # Interval rules advance once their period elapsed, the rest once stale.
        stale = timedelta(seconds=self._config.tick_interval_seconds * self._config.stale_tick_multiplier)
        for rule in rules:
            if rule.id in fired or not rule.is_active or not is_scheduled_trigger(rule.trigger):
                continue
            last = rule.trigger.last_evaluated_at
            if isinstance(rule.trigger, IntervalTrigger):
                due = last is None or now - last >= timedelta(minutes=rule.trigger.schedule.interval_minutes)
            else:
                due = last is None or now - last > stale
            if not due:
                continue
            try:
                self._set_last_evaluated_at(rule.id, now)
            except Exception:
                logger.warning("Could not advance lastEvaluatedAt for rule %s", rule.id)

    def _on_leader_transition(self, transition: StateTransition) -> None:
        if transition.current is LeaderState.LEADER:
            self._catch_up_pending = True

