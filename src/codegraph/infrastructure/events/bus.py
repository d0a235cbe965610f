"""In-memory event bus.

Publish/subscribe for domain events.  Handlers are called synchronously
in registration order.  Implements the ``EventBus`` port.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

from codegraph.config.logging import get_logger

logger = get_logger(__name__)


class InMemoryEventBus:
    """Synchronous in-memory event bus.

    ``subscribe_all`` handlers receive every event, after the handlers
    registered for the event's concrete type.  A failing handler is
    logged and does not stop delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[..., Any]]] = defaultdict(list)
        self._catch_all: list[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Callable[..., Any]) -> None:
        """Register *handler* to be called when *event_type* is published."""
        with self._lock:
            self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: Callable[..., Any]) -> None:
        with self._lock:
            self._catch_all.append(handler)

    def unsubscribe(self, event_type: type, handler: Callable[..., Any]) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        with self._lock:
            handlers = list(self._handlers.get(type(event), [])) + list(self._catch_all)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_bus.handler.error",
                    event_type=type(event).__name__,
                    error=str(e),
                )
