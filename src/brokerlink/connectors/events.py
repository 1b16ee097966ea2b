"""Callback registration for connector events."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

MARKET_DATA = "market_data"
ERROR = "error"

EVENTS = (MARKET_DATA, ERROR)

Handler = Callable[..., Any]


class EventChannel:
    """Synchronous publish/subscribe channel owned by one connector.

    Handlers run in registration order on the emitting task. A handler
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: dict[str, list[Handler]] = {event: [] for event in EVENTS}

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event``.

        Returns:
            Callable that removes the registration
        """
        handlers = self._handlers_for(event)
        handlers.append(handler)

        def remove() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return remove

    def emit(self, event: str, *payload: Any) -> int:
        """Deliver ``payload`` to every handler of ``event``.

        Returns:
            Number of handlers invoked
        """
        handlers = list(self._handlers_for(event))
        for handler in handlers:
            try:
                handler(*payload)
            except Exception:
                logger.exception("%s: %s handler %r failed", self.name, event, handler)
        return len(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers_for(event))

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()

    def _handlers_for(self, event: str) -> list[Handler]:
        try:
            return self._handlers[event]
        except KeyError:
            raise ValueError(f"Unknown event: {event}") from None
