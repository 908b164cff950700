"""Automation service: the cascade loop wiring evaluation to execution.

``handle_event`` is the single entry point for committed domain mutations.
Each top-level call gets its own dedup set and its own summary; recursion into
the events an action produced is depth-first and stops silently at the
configured cascade depth.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.config.models import FlowkeeperConfig
from flowkeeper.domain.events import DomainEventBus
from flowkeeper.domain.models import DomainEvent, EventType
from flowkeeper.domain.repositories import SectionRepository, TaskRepository
from flowkeeper.domain.tasks import TaskService
from flowkeeper.evaluation.engine import EvaluationContext, RuleAction, evaluate_rules
from flowkeeper.execution.executor import AppliedAction, RuleExecutor
from flowkeeper.execution.handlers import ActionContext, new_id
from flowkeeper.execution.notifications import CollectingSink, ExecutionSummary, NotificationSink
from flowkeeper.execution.undo import UndoService
from flowkeeper.rules.models import AutomationRule, DueDateRelativeTrigger, ExecutionType
from flowkeeper.rules.repository import RuleRepository
from flowkeeper.scheduling.evaluator import ScheduleEvaluation
from flowkeeper.scheduling.scheduler import TickSummary

logger = logging.getLogger(__name__)


class AutomationService:
    def __init__(
        self,
        task_repo: TaskRepository,
        section_repo: SectionRepository,
        rule_repo: RuleRepository,
        *,
        clock: Clock | None = None,
        config: FlowkeeperConfig | None = None,
        sink: NotificationSink | None = None,
        id_factory: Callable[[], str] = new_id,
    ) -> None:
        self._task_repo = task_repo
        self._section_repo = section_repo
        self._rule_repo = rule_repo
        self._clock = clock or SystemClock()
        self._config = config or FlowkeeperConfig()
        self._sink = sink or CollectingSink()
        self.task_service = TaskService(task_repo, self._clock)
        self.undo = UndoService(self._clock, self._config.undo)
        self._ctx = ActionContext(
            task_repo=task_repo,
            section_repo=section_repo,
            task_service=self.task_service,
            clock=self._clock,
            rule_repo=rule_repo,
            tz=self._config.scheduler.tzinfo,
            dedup=self._config.dedup,
            id_factory=id_factory,
        )
        self.executor = RuleExecutor(rule_repo, self._ctx, self.undo, self._config.execution_log)

    @property
    def max_depth(self) -> int:
        return self._config.engine.max_cascade_depth

    def handle_event(self, event: DomainEvent, dedup_set: set[str] | None = None) -> ExecutionSummary | None:
        """Evaluate and apply everything ``event`` sets off.

        Passing ``dedup_set`` joins an existing chain: the summary of the joined
        work is returned to the caller and nothing is notified here.
        """
        if event.depth >= self.max_depth:
            logger.debug("Cascade depth %d reached; dropping %s", event.depth, event.type.value)
            return None
        if dedup_set is not None:
            joined = ExecutionSummary()
            self._handle(event, dedup_set, joined, None)
            return joined

        summary = ExecutionSummary()
        self._handle(event, set(), summary, None)
        self._finish(summary)
        return summary

    def handle_scheduled_fire(
        self,
        rule: AutomationRule,
        evaluation: ScheduleEvaluation,
        execution_type: ExecutionType = ExecutionType.SCHEDULED,
    ) -> ExecutionSummary:
        """Scheduler callback. All actions of one firing land in one batch."""
        events = self.build_fired_events(rule, evaluation)
        summary = ExecutionSummary(execution_type=execution_type)
        if not events:
            return summary
        dedup_set: set[str] = set()
        actions = [action for event in events for action in self._evaluate(event)]
        batch = [action for action in actions if self._claim(action, dedup_set)]
        applied = self.executor.execute_actions(batch, events[0], execution_type=execution_type)
        for item in applied:
            self._follow(item, dedup_set, summary, execution_type)
        logger.info("Scheduled rule %s (%s) applied %d action(s)", rule.id, execution_type.value, len(applied))
        return summary

    @staticmethod
    def build_fired_events(rule: AutomationRule, evaluation: ScheduleEvaluation) -> list[DomainEvent]:
        if isinstance(rule.trigger, DueDateRelativeTrigger):
            entity_ids: Sequence[str] = evaluation.matching_task_ids or ()
        else:
            entity_ids = (rule.id,)
        return [
            DomainEvent(
                type=EventType.SCHEDULE_FIRED,
                entity_id=entity_id,
                project_id=rule.project_id,
                triggered_by_rule=rule.id,
            )
            for entity_id in entity_ids
        ]

    def notify_tick(self, tick: TickSummary) -> None:
        """Fold one scheduler tick into a single notification."""
        if not tick.summaries:
            return
        merged = ExecutionSummary(execution_type=ExecutionType.CATCH_UP if tick.is_catch_up else ExecutionType.SCHEDULED)
        for summary in tick.summaries:
            for run in summary.runs.values():
                for task_name in run.task_names:
                    merged.record(run.rule_id, run.rule_name, task_name)
        if not merged.is_empty:
            self._sink.notify(merged)

    def subscribe(self, bus: DomainEventBus) -> Callable[[], None]:
        """Feed user mutations from ``bus`` into ``handle_event``.

        Events stamped with ``triggered_by_rule`` were produced by this engine
        and have already been followed through the cascade.
        """

        def _listener(event: DomainEvent) -> None:
            if event.triggered_by_rule is not None:
                return
            self.handle_event(event)

        return bus.subscribe(_listener)

    def undo_last(self) -> bool:
        return self.undo.perform_undo(self._task_repo)

    def _evaluate(self, event: DomainEvent) -> list[RuleAction]:
        context = EvaluationContext(
            tasks=self._task_repo.find_by_project_id(event.project_id),
            sections=self._section_repo.find_by_project_id(event.project_id),
            now=self._clock.now().astimezone(self._config.scheduler.tzinfo),
        )
        return evaluate_rules(event, self._rule_repo.find_by_project_id(event.project_id), context)

    def _handle(
        self,
        event: DomainEvent,
        dedup_set: set[str],
        summary: ExecutionSummary,
        execution_type: ExecutionType | None,
    ) -> None:
        if event.depth >= self.max_depth:
            summary.truncated = True
            logger.debug("Cascade truncated at depth %d for %s", event.depth, event.entity_id)
            return
        for action in self._evaluate(event):
            if not self._claim(action, dedup_set):
                continue
            applied = self.executor.execute_actions(
                [action],
                event,
                execution_type=execution_type,
                capture_undo=event.depth == 0,
            )
            for item in applied:
                self._follow(item, dedup_set, summary, execution_type)

    def _follow(
        self,
        item: AppliedAction,
        dedup_set: set[str],
        summary: ExecutionSummary,
        execution_type: ExecutionType | None,
    ) -> None:
        summary.record(item.action.rule_id, item.rule_name, item.task_name)
        for child in item.events:
            self._handle(child, dedup_set, summary, execution_type)

    @staticmethod
    def _claim(action: RuleAction, dedup_set: set[str]) -> bool:
        key = action.dedup_key
        if key in dedup_set:
            logger.debug("Skipping repeated action %s in this chain", key)
            return False
        dedup_set.add(key)
        return True

    def _finish(self, summary: ExecutionSummary) -> None:
        if summary.is_empty:
            return
        summary.undo_available = self.undo.get() is not None
        self._sink.notify(summary)
