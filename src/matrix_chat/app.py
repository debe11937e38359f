"""Composition root wiring the conversation core together.

A rendering layer (the bundled CLI, or any UI) creates one
``ChatApplication``, subscribes to ``app.bus`` for change notifications and
calls the operations below in response to user input.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
from typing import Any

import httpx

from .attachments import DEFAULT_MAX_IMAGE_BYTES, load_image_data_uri
from .catalog import ModelCatalog
from .client import CompletionClient
from .config import DEFAULT_CONFIG, ApiConfig
from .events import EventBus
from .exceptions import CatalogFetchError
from .models import Conversation, Message
from .persistence import JsonFileStore, KeyValueStore, MemoryStore, StatePersistence
from .pipeline import MessageSendPipeline
from .settings import SettingsManager
from .store import ConversationStore
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)


class ChatApplication:
    """Own the store, settings, catalog, pipeline and persistence mirror."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        backend: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        cfg = config or DEFAULT_CONFIG
        api = ApiConfig.model_validate(cfg["api"])

        self.bus = EventBus()
        self.store = ConversationStore(self.bus)
        self.settings = SettingsManager(self.bus)
        self.catalog = ModelCatalog(
            self.settings,
            self.bus,
            endpoint=api.models_url,
            timeout=float(api.catalog_timeout),
            client=http_client,
        )
        self.completions = CompletionClient(
            endpoint=api.completions_url,
            app_title=cfg["app"]["title"],
            referer=cfg["app"]["referer"],
            timeout=float(api.timeout),
            client=http_client,
        )
        self.pipeline = MessageSendPipeline(
            self.store, self.settings, self.catalog, self.completions
        )

        if backend is None:
            persistence_cfg = cfg["persistence"]
            backend = (
                JsonFileStore(persistence_cfg["directory"])
                if persistence_cfg["enabled"]
                else MemoryStore()
            )
        self.persistence = StatePersistence(backend, self.bus)
        self.max_image_bytes = int(
            cfg.get("attachments", {}).get("max_image_bytes", DEFAULT_MAX_IMAGE_BYTES)
        )
        self._tasks = TaskManager()

    @classmethod
    async def open(
        cls,
        config: dict[str, Any] | None = None,
        *,
        backend: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> ChatApplication:
        """Build an application and bring it to a ready state."""
        app = cls(config, backend=backend, http_client=http_client)
        await app.start()
        return app

    def restore(self) -> None:
        """Load persisted state, then start mirroring every mutation."""
        settings = self.persistence.load_settings()
        if settings is not None:
            self.settings.restore(settings)

        conversations = self.persistence.load_conversations()
        if conversations is not None:
            self.store.restore(
                conversations, self.persistence.load_current_conversation_id()
            )

        models = self.persistence.load_models()
        if models is not None:
            self.catalog.load_cached(models)

        self.persistence.attach()
        LOGGER.info(
            "app.restored",
            extra={
                "event": "app.restored",
                "conversations": len(self.store.conversations),
                "models": len(self.catalog.models),
            },
        )

    async def start(self) -> None:
        """Restore state and fetch the catalog when no cached copy exists."""
        self.restore()
        if not self.catalog.models:
            await self.refresh_catalog()

    async def refresh_catalog(self) -> bool:
        """Refresh the model list; False means the catalog is now stale."""
        try:
            await self.catalog.refresh()
        except CatalogFetchError:
            return False
        return True

    def new_conversation(self) -> Conversation:
        return self.store.create_conversation()

    def attach_image(self, path: str) -> str:
        """Load an image file as a data URI ready to pass to ``submit``."""
        return load_image_data_uri(path, max_bytes=self.max_image_bytes)

    async def submit(self, text: str, images: Sequence[str] | None = None) -> Message:
        """Send into the current conversation, creating one when none exists."""
        self.pipeline.validate(text)
        conversation = self.store.current or self.store.create_conversation()
        return await self.pipeline.send(text, images, conversation.id)

    async def retry(self, conversation_id: str, message_id: str) -> Message:
        return await self.pipeline.retry(conversation_id, message_id)

    def submit_in_background(
        self, text: str, images: Sequence[str] | None = None
    ) -> asyncio.Task[Message]:
        """Start ``submit`` without waiting; the rest of the app stays usable."""
        self.pipeline.validate(text)
        task = asyncio.create_task(self.submit(text, images), name="matrix-chat.submit")
        self._tasks.add(task)
        return task

    def retry_in_background(
        self, conversation_id: str, message_id: str
    ) -> asyncio.Task[Message]:
        task = asyncio.create_task(
            self.retry(conversation_id, message_id), name="matrix-chat.retry"
        )
        self._tasks.add(task)
        return task

    async def close(self) -> None:
        """Wait for in-flight sends, then release HTTP resources."""
        await self._tasks.await_all()
        await self.catalog.aclose()
        await self.completions.aclose()
        self.persistence.detach()
