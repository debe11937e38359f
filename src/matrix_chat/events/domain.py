"""Event names published by the core."""

from __future__ import annotations

# data: {"conversations": list[Conversation]}
CONVERSATIONS_CHANGED = "conversations.changed"
# data: {"conversation_id": str | None}
CONVERSATION_SELECTED = "conversation.selected"
# data: {"settings": ChatSettings}
SETTINGS_CHANGED = "settings.changed"
# data: {"models": list[ModelData]}
CATALOG_CHANGED = "catalog.changed"
# data: {"error": str, "models": list[ModelData]}
CATALOG_STALE = "catalog.stale"
# data: {"conversation_id": str, "message_id": str, "status": MessageStatus}
MESSAGE_STATUS = "message.status"
