"""Key/value persistence and the snapshot mirror for core state."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import re
from typing import Any, Protocol
from uuid import uuid4

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .events import (
    CATALOG_CHANGED,
    CONVERSATION_SELECTED,
    CONVERSATIONS_CHANGED,
    SETTINGS_CHANGED,
    Event,
    EventBus,
)
from .exceptions import StorageError
from .models import ChatSettings, Conversation, ModelData

LOGGER = logging.getLogger(__name__)

CONVERSATIONS_KEY = "matrix-conversations"
SETTINGS_KEY = "matrix-chat-settings"
CURRENT_CONVERSATION_KEY = "matrix-current-conversation"
MODELS_KEY = "matrix-models"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_CONVERSATIONS_ADAPTER = TypeAdapter(list[Conversation])
_MODELS_ADAPTER = TypeAdapter(list[ModelData])


class KeyValueStore(Protocol):
    """Durable string storage addressed by key."""

    def load(self, key: str) -> str | None: ...

    def save(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-local store used when persistence is disabled."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self._data.get(key)

    def save(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """One file per key under a private directory; writes replace atomically."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise StorageError(f"Invalid storage key {key!r}.")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> str | None:
        target = self._path_for(key)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Unable to read {target}: {exc}") from exc

    def save(self, key: str, value: str) -> None:
        target = self._path_for(key)
        staging = target.with_name(f".{target.name}.{uuid4().hex[:8]}.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._enforce_permissions(self.directory, 0o700)
            staging.write_text(value, encoding="utf-8")
            self._enforce_permissions(staging)
            os.replace(staging, target)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise StorageError(f"Unable to write {target}: {exc}") from exc


class StatePersistence:
    """Mirror store, settings and catalog snapshots into a key/value backend.

    Subscribes to mutation events; every write is best-effort. A failed write
    is logged and the in-memory state stays authoritative. Loaders return
    ``None`` for a missing, unreadable or malformed blob.
    """

    def __init__(self, backend: KeyValueStore, bus: EventBus) -> None:
        self.backend = backend
        self.bus = bus
        self._handlers = {
            CONVERSATIONS_CHANGED: self._on_conversations_changed,
            CONVERSATION_SELECTED: self._on_conversation_selected,
            SETTINGS_CHANGED: self._on_settings_changed,
            CATALOG_CHANGED: self._on_catalog_changed,
        }
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        for name, handler in self._handlers.items():
            self.bus.subscribe(name, handler)
        self._attached = True

    def detach(self) -> None:
        for name, handler in self._handlers.items():
            self.bus.unsubscribe(name, handler)
        self._attached = False

    def save_conversations(self, conversations: list[Conversation]) -> None:
        self._save(CONVERSATIONS_KEY, [c.to_payload() for c in conversations])

    def save_settings(self, settings: ChatSettings) -> None:
        self._save(SETTINGS_KEY, settings.to_payload())

    def save_current_conversation_id(self, conversation_id: str | None) -> None:
        self._save(CURRENT_CONVERSATION_KEY, conversation_id)

    def save_models(self, models: list[ModelData]) -> None:
        self._save(MODELS_KEY, [m.to_payload() for m in models])

    def load_conversations(self) -> list[Conversation] | None:
        raw = self._load_json(CONVERSATIONS_KEY)
        if raw is None:
            return None
        try:
            return _CONVERSATIONS_ADAPTER.validate_python(raw)
        except PydanticValidationError as exc:
            self._log_malformed(CONVERSATIONS_KEY, exc)
            return None

    def load_settings(self) -> ChatSettings | None:
        raw = self._load_json(SETTINGS_KEY)
        if raw is None:
            return None
        try:
            return ChatSettings.model_validate(raw)
        except PydanticValidationError as exc:
            self._log_malformed(SETTINGS_KEY, exc)
            return None

    def load_current_conversation_id(self) -> str | None:
        raw = self._load_json(CURRENT_CONVERSATION_KEY)
        return raw if isinstance(raw, str) and raw else None

    def load_models(self) -> list[ModelData] | None:
        raw = self._load_json(MODELS_KEY)
        if raw is None:
            return None
        try:
            return _MODELS_ADAPTER.validate_python(raw)
        except PydanticValidationError as exc:
            self._log_malformed(MODELS_KEY, exc)
            return None

    def _on_conversations_changed(self, event: Event) -> None:
        self.save_conversations(event.data["conversations"])

    def _on_conversation_selected(self, event: Event) -> None:
        self.save_current_conversation_id(event.data["conversation_id"])

    def _on_settings_changed(self, event: Event) -> None:
        self.save_settings(event.data["settings"])

    def _on_catalog_changed(self, event: Event) -> None:
        self.save_models(event.data["models"])

    def _save(self, key: str, value: Any) -> None:
        try:
            self.backend.save(key, json.dumps(value, ensure_ascii=False))
        except StorageError as exc:
            LOGGER.warning(
                "storage.save.failed",
                extra={"event": "storage.save.failed", "key": key, "error": str(exc)},
            )

    def _load_json(self, key: str) -> Any:
        try:
            raw = self.backend.load(key)
        except StorageError as exc:
            LOGGER.warning(
                "storage.load.failed",
                extra={"event": "storage.load.failed", "key": key, "error": str(exc)},
            )
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            self._log_malformed(key, exc)
            return None

    @staticmethod
    def _log_malformed(key: str, exc: Exception) -> None:
        LOGGER.warning(
            "storage.load.malformed",
            extra={"event": "storage.load.malformed", "key": key, "error": str(exc)},
        )
