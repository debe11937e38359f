"""Holder for the process-wide chat settings."""

from __future__ import annotations

import logging
from typing import Any

from .events import SETTINGS_CHANGED, EventBus
from .models import ChatSettings

LOGGER = logging.getLogger(__name__)


class SettingsManager:
    """Own the single ``ChatSettings`` value and publish every change.

    The pipeline and the catalog receive this object by reference and always
    read ``current`` at call time, so a retry picks up the model that is
    configured when it runs.
    """

    def __init__(
        self, bus: EventBus | None = None, settings: ChatSettings | None = None
    ) -> None:
        self.bus = bus or EventBus()
        self._settings = settings if settings is not None else ChatSettings()

    @property
    def current(self) -> ChatSettings:
        return self._settings

    def update(self, **changes: Any) -> ChatSettings:
        """Replace selected fields (``api_key``, ``model``, ``persona``)."""
        unknown = set(changes) - set(ChatSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")
        normalized = {
            key: value.strip() if isinstance(value, str) and key != "persona" else value
            for key, value in changes.items()
        }
        self._settings = self._settings.model_copy(update=normalized)
        LOGGER.info(
            "settings.updated",
            extra={"event": "settings.updated", "fields": sorted(changes)},
        )
        self.bus.publish(SETTINGS_CHANGED, {"settings": self._settings})
        return self._settings

    def restore(self, settings: ChatSettings) -> None:
        """Install settings loaded from storage."""
        self._settings = settings
        self.bus.publish(SETTINGS_CHANGED, {"settings": self._settings})
