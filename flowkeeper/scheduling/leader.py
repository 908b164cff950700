"""Heartbeat-based leader election for the scheduler tick.

Each instance runs the same small state machine::

    FOLLOWER --claim--> CONTESTING --claim held after window--> LEADER
        ^                   |                                    |
        +----- lost --------+<----- heartbeat taken over --------+

Losing an election is the normal state of every non-leader instance and is
never reported as an error.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from flowkeeper.clock import Clock, SystemClock
from flowkeeper.config.models import LeaderConfig
from flowkeeper.scheduling.heartbeat import DEFAULT_SCOPE, Heartbeat, HeartbeatStore

logger = logging.getLogger(__name__)


class LeaderState(str, Enum):
    FOLLOWER = "follower"
    CONTESTING = "contesting"
    LEADER = "leader"


@dataclass(frozen=True, slots=True)
class StateTransition:
    previous: LeaderState
    current: LeaderState
    at: datetime
    reason: str


TransitionListener = Callable[[StateTransition], None]


class LeaderElection:
    """One instance's view of the election over a shared ``HeartbeatStore``."""

    def __init__(
        self,
        store: HeartbeatStore,
        *,
        instance_id: str | None = None,
        clock: Clock | None = None,
        config: LeaderConfig | None = None,
        scope: str = DEFAULT_SCOPE,
    ) -> None:
        self._store = store
        self._instance_id = instance_id or uuid.uuid4().hex
        self._clock = clock or SystemClock()
        self._config = config or LeaderConfig()
        self._scope = scope
        self._state = LeaderState.FOLLOWER
        self._claimed_at: datetime | None = None
        self._listeners: list[TransitionListener] = []
        self.transitions: list[StateTransition] = []
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def state(self) -> LeaderState:
        return self._state

    @property
    def is_leader(self) -> bool:
        return self._state is LeaderState.LEADER

    def on_transition(self, listener: TransitionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def poll(self) -> LeaderState:
        """Advance the state machine once. Called every heartbeat interval."""
        now = self._clock.now()
        current = self._store.read(self._scope)

        if self._state is LeaderState.LEADER:
            if current is not None and current.instance_id != self._instance_id:
                self._transition(LeaderState.FOLLOWER, f"heartbeat taken over by {current.instance_id}")
                return self._state
            self._store.write(self._heartbeat(now), self._scope)
            return self._state

        if self._state is LeaderState.CONTESTING:
            assert self._claimed_at is not None
            if current is None or current.instance_id != self._instance_id:
                self._claimed_at = None
                self._transition(LeaderState.FOLLOWER, "claim lost")
                return self._state
            if (now - self._claimed_at).total_seconds() >= self._config.claim_window_seconds:
                self._store.write(self._heartbeat(now), self._scope)
                self._claimed_at = None
                self._transition(LeaderState.LEADER, "claim held through window")
            return self._state

        if self._is_claimable(current, now):
            if self._store.compare_and_swap(current, self._heartbeat(now), self._scope):
                self._claimed_at = now
                self._transition(LeaderState.CONTESTING, "claimed vacant heartbeat")
                if self._config.claim_window_seconds <= 0:
                    return self.poll()
            else:
                logger.debug("Instance %s lost claim race", self._instance_id)
        return self._state

    def force_takeover(self) -> None:
        """Promote this instance now, overwriting whichever heartbeat is stored."""
        self._store.write(self._heartbeat(self._clock.now()), self._scope)
        self._claimed_at = None
        if self._state is not LeaderState.LEADER:
            self._transition(LeaderState.LEADER, "forced takeover")

    def resign(self) -> None:
        if self._state is LeaderState.FOLLOWER:
            return
        self._store.clear(self._instance_id, self._scope)
        self._claimed_at = None
        self._transition(LeaderState.FOLLOWER, "resigned")

    async def start(self) -> None:
        async with self._lock:
            if self._task is not None:
                return
            self._task = asyncio.create_task(self._run(), name=f"leader-election:{self._instance_id}")

    async def stop(self, *, resign: bool = True) -> None:
        async with self._lock:
            if self._task is not None:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
                self._task = None
            if resign:
                self.resign()

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def _run(self) -> None:
        while True:
            try:
                self.poll()
            except Exception:
                logger.exception("Leader election poll failed for %s", self._instance_id)
            if self._state is LeaderState.CONTESTING:
                delay = max(self._config.claim_window_seconds, 0.0)
            else:
                delay = self._config.heartbeat_interval_seconds
            await asyncio.sleep(delay)

    def _is_claimable(self, current: Heartbeat | None, now: datetime) -> bool:
        if current is None or current.instance_id == self._instance_id:
            return True
        return current.is_expired(now, self._config.heartbeat_timeout_seconds)

    def _heartbeat(self, now: datetime) -> Heartbeat:
        return Heartbeat(instance_id=self._instance_id, timestamp=now)

    def _transition(self, target: LeaderState, reason: str) -> None:
        transition = StateTransition(self._state, target, self._clock.now(), reason)
        self._state = target
        self.transitions.append(transition)
        log = logger.info if LeaderState.LEADER in (transition.previous, target) else logger.debug
        log("Instance %s %s -> %s (%s)", self._instance_id, transition.previous.value, target.value, reason)
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                logger.exception("Leader transition listener failed")
