"""Internal publish/subscribe bus for session domain events."""

import logging
from typing import Any, Callable, Optional

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)


class EventBus:
    """Synchronous publish/subscribe for domain events.

    Handlers run in subscription order at publish time. Coroutine handlers
    are scheduled on the running loop. Exceptions raised by a handler are
    logged and never reach the publisher.
    """

    def __init__(self):
        self._emitter = AsyncIOEventEmitter()
        self._emitter.on("error", self._on_handler_error)

    def subscribe(self, event: str, handler: Optional[Callable] = None):
        """Subscribe ``handler`` to ``event``.

        Usable as a decorator::

            @session.on("packet")
            def on_packet(data):
                ...
        """
        if handler is None:
            return lambda f: self.subscribe(event, f)
        self._emitter.on(event, handler)
        return handler

    def unsubscribe(self, event: str, handler: Callable) -> None:
        try:
            self._emitter.remove_listener(event, handler)
        except KeyError:
            logger.debug(f"Handler not subscribed to {event}")

    def publish(self, event: str, payload: Any = None) -> None:
        self._emitter.emit(event, payload)

    def listener_count(self, event: str) -> int:
        return len(self._emitter.listeners(event))

    def _on_handler_error(self, exc: Exception) -> None:
        logger.error(f"Event handler raised: {exc!r}")
