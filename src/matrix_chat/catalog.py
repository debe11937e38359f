"""Remote model catalog: fetch, ordering, filtering and capability lookup."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import locale
import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from .events import CATALOG_CHANGED, CATALOG_STALE, EventBus
from .exceptions import CatalogFetchError
from .models import ModelData, parse_price
from .settings import SettingsManager

LOGGER = logging.getLogger(__name__)

DEFAULT_CATALOG_URL = "https://openrouter.ai/api/v1/models"


@dataclass(frozen=True)
class ModelFilters:
    """Conjunctive catalog filters; an inactive flag does not restrict."""

    free_only: bool = False
    vision_only: bool = False
    moderated_only: bool = False


@dataclass(frozen=True)
class ModelCapabilities:
    """Capability flags for one catalog entry.

    known=False means the model id is not in the catalog; every flag is then
    False, so requests to it are built as plain text.
    """

    supports_vision: bool = False
    is_free: bool = False
    is_moderated: bool = False
    known: bool = False


def sort_models(models: Iterable[ModelData]) -> list[ModelData]:
    """Free-tier models first, then by display name within each tier."""
    return sorted(
        models,
        key=lambda m: (not m.is_free, locale.strxfrm(m.name.casefold()), m.name),
    )


def filter_models(
    models: Iterable[ModelData],
    search_text: str = "",
    filters: ModelFilters | None = None,
) -> list[ModelData]:
    """Return the models matching the search text and every active filter."""
    active = filters or ModelFilters()
    needle = search_text.lower()
    matched: list[ModelData] = []
    for model in models:
        if needle not in model.name.lower() and needle not in model.description.lower():
            continue
        if active.free_only and not model.is_free:
            continue
        if active.vision_only and not model.supports_vision:
            continue
        if active.moderated_only and not model.is_moderated:
            continue
        matched.append(model)
    return matched


def format_price(price: str) -> str:
    """Render a per-token price the way the model picker shows it."""
    value = parse_price(price)
    if value is None:
        return "N/A"
    if value == 0:
        return "FREE"
    if value < 0.000001:
        return f"{value * 1_000_000:.2f}µ"
    if value < 0.001:
        return f"{value * 1000:.2f}m"
    return f"${value:.6f}"


class ModelCatalog:
    """Own the model list; the only writer of it.

    ``refresh`` replaces the list with a single assignment, so readers see
    either the old or the new list, never a partial one. A failed refresh
    keeps the previous list and flags the catalog as stale.
    """

    def __init__(
        self,
        settings: SettingsManager,
        bus: EventBus | None = None,
        endpoint: str = DEFAULT_CATALOG_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.bus = bus or settings.bus
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._models: list[ModelData] = []
        self.stale = False

    @property
    def models(self) -> list[ModelData]:
        return self._models

    def load_cached(self, models: list[ModelData]) -> None:
        """Seed the catalog from a persisted copy without fetching."""
        self._models = sort_models(models)
        self.bus.publish(CATALOG_CHANGED, {"models": self._models})

    async def refresh(self) -> list[ModelData]:
        """Fetch, sort and install the remote model list."""
        LOGGER.info(
            "catalog.refresh.start",
            extra={"event": "catalog.refresh.start", "endpoint": self.endpoint},
        )
        try:
            response = await self._client.get(self.endpoint)
        except Exception as exc:
            raise self._mark_stale(self._describe_fetch_failure(exc)) from exc

        if not response.is_success:
            raise self._mark_stale(
                f"Failed to fetch models: HTTP {response.status_code}"
            )

        try:
            payload: Any = response.json()
            models = [ModelData.model_validate(item) for item in payload["data"]]
        except (ValueError, KeyError, TypeError, PydanticValidationError) as exc:
            raise self._mark_stale(f"Malformed model catalog: {exc}") from exc

        self._models = sort_models(models)
        self.stale = False
        LOGGER.info(
            "catalog.refresh.complete",
            extra={"event": "catalog.refresh.complete", "count": len(self._models)},
        )
        self.bus.publish(CATALOG_CHANGED, {"models": self._models})
        self._select_default_model()
        return self._models

    def filter(
        self, search_text: str = "", filters: ModelFilters | None = None
    ) -> list[ModelData]:
        return filter_models(self._models, search_text, filters)

    def get(self, model_id: str) -> ModelData | None:
        for model in self._models:
            if model.id == model_id:
                return model
        return None

    def selected_model(self) -> ModelData | None:
        """Return the catalog entry for the currently configured model."""
        return self.get(self.settings.current.model)

    def capabilities(self, model_id: str) -> ModelCapabilities:
        model = self.get(model_id)
        if model is None:
            return ModelCapabilities()
        return ModelCapabilities(
            supports_vision=model.supports_vision,
            is_free=model.is_free,
            is_moderated=model.is_moderated,
            known=True,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _select_default_model(self) -> None:
        if self.settings.current.model or not self._models:
            return
        default = next((m for m in self._models if m.is_free), self._models[0])
        LOGGER.info(
            "catalog.default_model.selected",
            extra={"event": "catalog.default_model.selected", "model": default.id},
        )
        self.settings.update(model=default.id)

    def _describe_fetch_failure(self, exc: Exception) -> str:
        if isinstance(exc, httpx.TimeoutException):
            return f"Request to {self.endpoint} timed out."
        if isinstance(exc, httpx.HTTPError):
            return f"Unable to reach model catalog: {exc}"
        return f"Model catalog request failed: {exc}"

    def _mark_stale(self, message: str) -> CatalogFetchError:
        self.stale = True
        LOGGER.warning(
            "catalog.refresh.failed",
            extra={"event": "catalog.refresh.failed", "error": message},
        )
        self.bus.publish(CATALOG_STALE, {"error": message, "models": self._models})
        return CatalogFetchError(message)
