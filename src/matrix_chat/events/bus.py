"""Synchronous event bus connecting the core to its observers.

The store, settings and catalog publish; persistence and any rendering layer
subscribe::

    bus = EventBus()
    bus.subscribe(CONVERSATIONS_CHANGED, lambda event: redraw(event.data))
    store = ConversationStore(bus)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any]
    source: str | None = None


Handler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe hub.

    Handlers run inline, in subscription order, before ``publish`` returns.
    A failing handler is logged and never breaks the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, event_name: str, handler: Handler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        event = Event(name=event_name, data=data, source=source)
        # Snapshot so a handler may unsubscribe itself mid-dispatch.
        for handler in tuple(self._handlers.get(event_name, ())):
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001 - observers must not break mutations.
                LOGGER.error(
                    "events.handler.failed",
                    extra={
                        "event": "events.handler.failed",
                        "event_name": event_name,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                        "error": str(exc),
                    },
                )

    def clear(self, event_name: str | None = None) -> None:
        """Drop the handlers of one event, or of every event."""
        if event_name is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_name, None)
