"""Send/retry orchestration for one exchange with the completion endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
from typing import Any

from .catalog import ModelCatalog
from .client import CompletionClient
from .codec import (
    build_content,
    build_request_body,
    encode_history_for_api,
    encode_outbound,
)
from .events import CONVERSATIONS_CHANGED, Event
from .exceptions import ProtocolError, TransportError, ValidationError
from .models import Message, RetryData
from .settings import SettingsManager
from .state import MessageStatus
from .store import ConversationStore

LOGGER = logging.getLogger(__name__)

ERROR_PREFIX = "ERROR: "


class MessageSendPipeline:
    """Drive a message through ``sending -> success | error`` and retries.

    Sends are serialized per conversation: a second send to the same
    conversation waits until the first has resolved, so appends can never
    interleave. Other conversations are unaffected.
    """

    def __init__(
        self,
        store: ConversationStore,
        settings: SettingsManager,
        catalog: ModelCatalog,
        client: CompletionClient,
    ) -> None:
        self.store = store
        self.settings = settings
        self.catalog = catalog
        self.client = client
        self._locks: dict[str, asyncio.Lock] = {}
        store.bus.subscribe(CONVERSATIONS_CHANGED, self._forget_deleted)

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _forget_deleted(self, event: Event | None = None) -> None:
        """Drop idle locks whose conversation no longer exists."""
        live = {conversation.id for conversation in self.store.conversations}
        stale = [
            conversation_id
            for conversation_id, lock in self._locks.items()
            if conversation_id not in live and not lock.locked()
        ]
        for conversation_id in stale:
            del self._locks[conversation_id]

    def validate(self, text: str) -> None:
        """Reject a send before any state is touched."""
        if not text.strip():
            raise ValidationError("Message text is required.")
        current = self.settings.current
        if not current.api_key:
            raise ValidationError("An API key must be configured before sending.")
        if not current.model:
            raise ValidationError("A model must be selected before sending.")

    def in_flight(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    async def send(
        self,
        text: str,
        images: Sequence[str] | None,
        conversation_id: str,
        retry_of: str | None = None,
    ) -> Message:
        """Send a user turn (or re-send a failed one) and record the outcome.

        Returns the assistant message carrying the outcome. Transport and
        protocol failures never escape: they become an ``error`` message with
        retry data. ``ValidationError`` and ``ConversationNotFoundError`` are
        raised before anything is mutated. If the conversation is deleted
        while the request is in flight, the outcome is returned detached.
        """
        try:
            async with self._lock_for(conversation_id):
                return await self._send_locked(
                    text, list(images or []), conversation_id, retry_of
                )
        finally:
            self._forget_deleted()

    async def _send_locked(
        self,
        text: str,
        images: list[str],
        conversation_id: str,
        retry_of: str | None,
    ) -> Message:
        self.validate(text)
        conversation = self.store.require(conversation_id)

        if retry_of is None:
            history = list(conversation.messages)
            self.store.append_message(
                conversation_id,
                Message(
                    role="user",
                    content=build_content(text, images),
                    status=MessageStatus.SUCCESS,
                ),
            )
        else:
            target = conversation.find_message(retry_of)
            if (
                target is None
                or target.status is not MessageStatus.ERROR
                or target.retry_data is None
            ):
                raise ValidationError(
                    f"Message {retry_of!r} is not a failed message that can be retried."
                )
            history = self._retry_history(conversation.messages, retry_of)
            self.store.update_message_status(
                conversation_id, retry_of, MessageStatus.SENDING
            )

        settings = self.settings.current
        capabilities = self.catalog.capabilities(settings.model)
        body = build_request_body(
            settings.persona,
            encode_history_for_api(history),
            encode_outbound(text, images, capabilities.supports_vision),
            settings.model,
        )
        LOGGER.info(
            "pipeline.send.start",
            extra={
                "event": "pipeline.send.start",
                "conversation_id": conversation_id,
                "model": settings.model,
                "message_count": len(body["messages"]),
                "has_images": capabilities.supports_vision and bool(images),
                "retry": retry_of is not None,
            },
        )

        try:
            reply = await self.client.complete(body, settings.api_key)
        except (TransportError, ProtocolError) as exc:
            return self._record_failure(conversation_id, text, images, retry_of, exc)
        return self._record_success(conversation_id, reply, retry_of)

    async def retry(self, conversation_id: str, message_id: str) -> Message:
        """Re-issue a failed exchange from its stored retry data."""
        conversation = self.store.require(conversation_id)
        message = conversation.find_message(message_id)
        if message is None or message.retry_data is None:
            raise ValidationError(f"Message {message_id!r} has no retry data.")
        retry_data = message.retry_data
        return await self.send(
            retry_data.original_input,
            retry_data.images,
            conversation_id,
            retry_of=message_id,
        )

    @staticmethod
    def _retry_history(messages: list[Message], message_id: str) -> list[Message]:
        # Everything before the failed reply, minus the user turn being re-sent.
        prefix: list[Message] = []
        for message in messages:
            if message.id == message_id:
                break
            prefix.append(message)
        if prefix and prefix[-1].role == "user":
            prefix.pop()
        return prefix

    def _retry_target(self, conversation_id: str, retry_of: str) -> Message | None:
        conversation = self.store.get(conversation_id)
        if conversation is None:
            return None
        return conversation.find_message(retry_of)

    def _orphaned(
        self, conversation_id: str, retry_of: str | None, **fields: Any
    ) -> Message:
        """Build the outcome for a conversation deleted mid-request."""
        if retry_of is not None:
            fields["id"] = retry_of
        message = Message(role="assistant", **fields)
        LOGGER.warning(
            "pipeline.send.orphaned",
            extra={
                "event": "pipeline.send.orphaned",
                "conversation_id": conversation_id,
                "status": message.status.value,
            },
        )
        return message

    def _record_success(
        self, conversation_id: str, reply: str, retry_of: str | None
    ) -> Message:
        LOGGER.info(
            "pipeline.send.succeeded",
            extra={
                "event": "pipeline.send.succeeded",
                "conversation_id": conversation_id,
                "retry": retry_of is not None,
            },
        )
        if retry_of is None:
            if self.store.get(conversation_id) is None:
                return self._orphaned(conversation_id, None, content=reply)
            return self.store.append_message(
                conversation_id,
                Message(role="assistant", content=reply, status=MessageStatus.SUCCESS),
            )

        target = self._retry_target(conversation_id, retry_of)
        if target is None:
            return self._orphaned(conversation_id, retry_of, content=reply)
        self.store.replace_message_content(conversation_id, retry_of, reply)
        self.store.update_message_status(
            conversation_id, retry_of, MessageStatus.SUCCESS
        )
        return target

    def _record_failure(
        self,
        conversation_id: str,
        text: str,
        images: list[str],
        retry_of: str | None,
        exc: TransportError | ProtocolError,
    ) -> Message:
        error_text = f"{ERROR_PREFIX}{exc}"
        LOGGER.warning(
            "pipeline.send.failed",
            extra={
                "event": "pipeline.send.failed",
                "conversation_id": conversation_id,
                "error_type": type(exc).__name__,
                "error": str(exc),
                "retry": retry_of is not None,
            },
        )
        outcome = {
            "content": error_text,
            "status": MessageStatus.ERROR,
            "error": error_text,
            "retry_data": RetryData(
                original_input=text, images=images, conversation_id=conversation_id
            ),
        }
        if retry_of is None:
            if self.store.get(conversation_id) is None:
                return self._orphaned(conversation_id, None, **outcome)
            return self.store.append_message(
                conversation_id, Message(role="assistant", **outcome)
            )

        target = self._retry_target(conversation_id, retry_of)
        if target is None:
            return self._orphaned(conversation_id, retry_of, **outcome)
        self.store.replace_message_content(conversation_id, retry_of, error_text)
        self.store.update_message_status(
            conversation_id, retry_of, MessageStatus.ERROR, error_text
        )
        return target
