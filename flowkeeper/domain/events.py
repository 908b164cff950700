"""In-process domain event bus."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable

from flowkeeper.domain.models import DomainEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[DomainEvent], None]


class DomainEventBus:
    """Fan committed mutations out to subscribers.

    A failing listener is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self._lock = Lock()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: DomainEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Domain event listener failed for %s %s", event.type.value, event.entity_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
