"""Top-level package for matrix-chat."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import ChatApplication
    from .catalog import ModelCapabilities, ModelCatalog, ModelFilters
    from .client import CompletionClient
    from .config import ensure_config_dir, load_config
    from .exceptions import (
        CatalogFetchError,
        ConversationNotFoundError,
        MatrixChatError,
        ProtocolError,
        StorageError,
        TransportError,
        ValidationError,
    )
    from .models import ChatSettings, Conversation, Message, ModelData, RetryData
    from .persistence import JsonFileStore, StatePersistence
    from .pipeline import MessageSendPipeline
    from .settings import SettingsManager
    from .state import MessageStatus
    from .store import ConversationStore

_EXPORTS: dict[str, str] = {
    "ChatApplication": ".app",
    "ModelCapabilities": ".catalog",
    "ModelCatalog": ".catalog",
    "ModelFilters": ".catalog",
    "CompletionClient": ".client",
    "ensure_config_dir": ".config",
    "load_config": ".config",
    "CatalogFetchError": ".exceptions",
    "ConversationNotFoundError": ".exceptions",
    "MatrixChatError": ".exceptions",
    "ProtocolError": ".exceptions",
    "StorageError": ".exceptions",
    "TransportError": ".exceptions",
    "ValidationError": ".exceptions",
    "ChatSettings": ".models",
    "Conversation": ".models",
    "Message": ".models",
    "ModelData": ".models",
    "RetryData": ".models",
    "JsonFileStore": ".persistence",
    "StatePersistence": ".persistence",
    "MessageSendPipeline": ".pipeline",
    "SettingsManager": ".settings",
    "MessageStatus": ".state",
    "ConversationStore": ".store",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package stays cheap."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(module_name, __name__), name)
