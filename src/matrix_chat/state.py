"""Message delivery status machine."""

from __future__ import annotations

from enum import Enum


class MessageStatus(str, Enum):
    """Delivery status of a single message."""

    SENDING = "sending"
    SUCCESS = "success"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.SENDING: frozenset({MessageStatus.SUCCESS, MessageStatus.ERROR}),
    MessageStatus.ERROR: frozenset({MessageStatus.SENDING}),
    MessageStatus.SUCCESS: frozenset(),
}


def can_transition(current: MessageStatus, new_status: MessageStatus) -> bool:
    """Return True when ``current -> new_status`` is a legal status change."""
    return new_status in ALLOWED_TRANSITIONS[current]
