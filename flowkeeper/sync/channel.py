"""Message-passing boundary between instances sharing persisted state.

The engine only depends on ``SyncChannel``: push local writes with ``apply``
and receive other instances' writes through ``on_remote_update``. Swapping the
in-memory broker for a server transport does not touch the engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class UpdateOp(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"
    REPLACE_ALL = "replace_all"


@dataclass(frozen=True, slots=True)
class StateUpdate:
    origin: str
    collection: str
    op: UpdateOp
    key: str | None = None
    payload: Any = None
    sequence: int = field(default=0, compare=False)


RemoteUpdateCallback = Callable[[StateUpdate], None]


class SyncChannel(Protocol):
    @property
    def instance_id(self) -> str: ...

    def apply(self, update: StateUpdate) -> None: ...

    def on_remote_update(self, callback: RemoteUpdateCallback) -> Callable[[], None]: ...


class InMemoryBroker:
    """Delivers every update to all connected channels except its origin."""

    def __init__(self) -> None:
        self._channels: dict[str, BrokerChannel] = {}
        self._lock = Lock()
        self._sequence = 0

    def connect(self, instance_id: str) -> BrokerChannel:
        with self._lock:
            if instance_id in self._channels:
                raise ValueError(f"instance '{instance_id}' already connected")
            channel = BrokerChannel(self, instance_id)
            self._channels[instance_id] = channel
        return channel

    def disconnect(self, instance_id: str) -> None:
        with self._lock:
            self._channels.pop(instance_id, None)

    def publish(self, update: StateUpdate) -> int:
        with self._lock:
            self._sequence += 1
            stamped = StateUpdate(
                origin=update.origin,
                collection=update.collection,
                op=update.op,
                key=update.key,
                payload=update.payload,
                sequence=self._sequence,
            )
            targets = [c for iid, c in self._channels.items() if iid != update.origin]
        for channel in targets:
            channel._deliver(stamped)
        return len(targets)


class BrokerChannel:
    """One instance's endpoint on an ``InMemoryBroker``."""

    def __init__(self, broker: InMemoryBroker, instance_id: str) -> None:
        self._broker = broker
        self._instance_id = instance_id
        self._callbacks: list[RemoteUpdateCallback] = []

    @property
    def instance_id(self) -> str:
        return self._instance_id

    def apply(self, update: StateUpdate) -> None:
        self._broker.publish(update)

    def on_remote_update(self, callback: RemoteUpdateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def close(self) -> None:
        self._callbacks.clear()
        self._broker.disconnect(self._instance_id)

    def _deliver(self, update: StateUpdate) -> None:
        for callback in list(self._callbacks):
            try:
                callback(update)
            except Exception:
                logger.exception(
                    "Remote update callback failed on %s for %s/%s",
                    self._instance_id,
                    update.collection,
                    update.op.value,
                )
