"""In-memory conversation collection and its mutation operations."""

from __future__ import annotations

import logging
import re

from .events import (
    CONVERSATION_SELECTED,
    CONVERSATIONS_CHANGED,
    MESSAGE_STATUS,
    EventBus,
)
from .exceptions import ConversationNotFoundError, InvalidStatusTransitionError
from .models import Conversation, Message, MessageContent, now_ms
from .state import MessageStatus, can_transition

LOGGER = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 30
TITLE_TRUNCATION_MARKER = "..."
UNTITLED_TITLE = "UNTITLED.SESSION"
INTERRUPTED_ERROR = "ERROR: Request interrupted before completion."
_TITLE_DISALLOWED = re.compile(r"[^A-Z0-9\s]")


class ConversationStore:
    """Single source of truth for conversations and the current selection.

    Conversations are kept newest-first. Every mutation publishes an event on
    the bus; the store itself knows nothing about storage or rendering.
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus or EventBus()
        self._conversations: list[Conversation] = []
        self._current_id: str | None = None

    @property
    def conversations(self) -> list[Conversation]:
        """Return the conversations in collection order (newest first)."""
        return list(self._conversations)

    @property
    def current_id(self) -> str | None:
        return self._current_id

    @property
    def current(self) -> Conversation | None:
        if self._current_id is None:
            return None
        return self.get(self._current_id)

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def require(self, conversation_id: str) -> Conversation:
        """Return the conversation or raise ``ConversationNotFoundError``."""
        conversation = self.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(
                f"Conversation {conversation_id!r} does not exist."
            )
        return conversation

    def create_conversation(self) -> Conversation:
        """Insert an empty conversation at the head and make it current."""
        conversation = Conversation()
        self._conversations.insert(0, conversation)
        self._current_id = conversation.id
        LOGGER.info(
            "store.conversation.created",
            extra={
                "event": "store.conversation.created",
                "conversation_id": conversation.id,
            },
        )
        self._notify_conversations()
        self._notify_selected()
        return conversation

    def delete_conversation(self, conversation_id: str) -> None:
        """Remove a conversation; re-point the selection if it was current."""
        remaining = [c for c in self._conversations if c.id != conversation_id]
        if len(remaining) == len(self._conversations):
            return
        self._conversations = remaining
        LOGGER.info(
            "store.conversation.deleted",
            extra={
                "event": "store.conversation.deleted",
                "conversation_id": conversation_id,
            },
        )
        self._notify_conversations()
        if self._current_id == conversation_id:
            self._current_id = remaining[0].id if remaining else None
            self._notify_selected()

    def select(self, conversation_id: str) -> Conversation:
        """Make an existing conversation current."""
        conversation = self.require(conversation_id)
        if self._current_id != conversation_id:
            self._current_id = conversation_id
            self._notify_selected()
        return conversation

    def append_message(self, conversation_id: str, message: Message) -> Message:
        """Append a message and bump ``updated_at``.

        The first user message of a conversation also fixes its title; the
        title is never derived again afterwards.
        """
        conversation = self.require(conversation_id)
        if not conversation.messages and message.role == "user":
            conversation.title = self.derive_title(message.text)
        conversation.messages.append(message)
        self._touch(conversation)
        self._notify_conversations()
        return message

    def update_message_status(
        self,
        conversation_id: str,
        message_id: str,
        status: MessageStatus,
        error: str | None = None,
    ) -> Message | None:
        """Change one message's status and error text in place.

        Returns ``None`` when the message is not found. Moving to ``success``
        drops any retry data, since there is nothing left to retry.
        """
        conversation = self.require(conversation_id)
        message = conversation.find_message(message_id)
        if message is None:
            return None
        if not can_transition(message.status, status):
            raise InvalidStatusTransitionError(
                f"Message {message_id!r} cannot move from "
                f"{message.status.value} to {status.value}."
            )
        message.status = status
        message.error = error
        if status is MessageStatus.SUCCESS:
            message.retry_data = None
        self._touch(conversation)
        self.bus.publish(
            MESSAGE_STATUS,
            {
                "conversation_id": conversation_id,
                "message_id": message_id,
                "status": status,
            },
        )
        self._notify_conversations()
        return message

    def replace_message_content(
        self, conversation_id: str, message_id: str, content: MessageContent
    ) -> Message | None:
        """Swap the content of a message, keeping its identity and position."""
        conversation = self.require(conversation_id)
        message = conversation.find_message(message_id)
        if message is None:
            return None
        message.content = content
        self._touch(conversation)
        self._notify_conversations()
        return message

    def restore(
        self, conversations: list[Conversation], current_id: str | None
    ) -> None:
        """Replace the whole collection from a persisted snapshot.

        An unknown ``current_id`` falls back to the first conversation. A retry
        that was still in flight when the snapshot was taken comes back as a
        retryable error.
        """
        for conversation in conversations:
            for message in conversation.messages:
                if (
                    message.status is MessageStatus.SENDING
                    and message.retry_data is not None
                ):
                    message.status = MessageStatus.ERROR
                    message.error = INTERRUPTED_ERROR
        self._conversations = list(conversations)
        if current_id is not None and self.get(current_id) is not None:
            self._current_id = current_id
        else:
            self._current_id = self._conversations[0].id if self._conversations else None
        self._notify_conversations()
        self._notify_selected()

    @staticmethod
    def derive_title(first_message_text: str) -> str:
        """Build a session title from the first user message."""
        head = first_message_text[:TITLE_MAX_LENGTH].upper()
        title = _TITLE_DISALLOWED.sub("", head)
        if not title.strip():
            return UNTITLED_TITLE
        if len(first_message_text) > TITLE_MAX_LENGTH:
            title += TITLE_TRUNCATION_MARKER
        return title

    @staticmethod
    def _touch(conversation: Conversation) -> None:
        # updated_at strictly increases even within one clock millisecond.
        conversation.updated_at = max(now_ms(), conversation.updated_at + 1)

    def _notify_conversations(self) -> None:
        self.bus.publish(CONVERSATIONS_CHANGED, {"conversations": self.conversations})

    def _notify_selected(self) -> None:
        self.bus.publish(CONVERSATION_SELECTED, {"conversation_id": self._current_id})
