"""Synchronous event bus and the event names the core publishes."""

from .bus import Event, EventBus
from .domain import (
    CATALOG_CHANGED,
    CATALOG_STALE,
    CONVERSATION_SELECTED,
    CONVERSATIONS_CHANGED,
    MESSAGE_STATUS,
    SETTINGS_CHANGED,
)

__all__ = [
    "CATALOG_CHANGED",
    "CATALOG_STALE",
    "CONVERSATIONS_CHANGED",
    "CONVERSATION_SELECTED",
    "Event",
    "EventBus",
    "MESSAGE_STATUS",
    "SETTINGS_CHANGED",
]
