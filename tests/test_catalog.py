"""Tests for catalog fetch, ordering, filtering and capability lookup."""

from __future__ import annotations

from typing import Any
import unittest

import httpx

from matrix_chat.catalog import (
    ModelCatalog,
    ModelFilters,
    filter_models,
    format_price,
    sort_models,
)
from matrix_chat.events import CATALOG_CHANGED, CATALOG_STALE, Event, EventBus
from matrix_chat.exceptions import CatalogFetchError
from matrix_chat.models import ChatSettings, ModelData
from matrix_chat.settings import SettingsManager


def _descriptor(
    model_id: str,
    name: str,
    *,
    free: bool,
    vision: bool = False,
    moderated: bool = False,
    description: str = "",
) -> dict[str, Any]:
    price = "0" if free else "0.000002"
    return {
        "id": model_id,
        "name": name,
        "description": description,
        "architecture": {
            "input_modalities": ["text", "image"] if vision else ["text"],
            "output_modalities": ["text"],
        },
        "top_provider": {"is_moderated": moderated},
        "pricing": {"prompt": price, "completion": price, "image": "0"},
        "context_length": 8192,
    }


CATALOG = [
    _descriptor("paid/zeta", "Zeta", free=False, vision=True),
    _descriptor("free/beta", "Beta", free=True, moderated=True),
    _descriptor("paid/alpha", "Alpha", free=False, description="Fast reasoning"),
    _descriptor("free/gamma", "Gamma Vision", free=True, vision=True),
]


def _models() -> list[ModelData]:
    return [ModelData.model_validate(item) for item in CATALOG]


class CatalogFunctionTests(unittest.TestCase):
    """Validate pure ordering, filtering and price formatting helpers."""

    def test_sort_puts_free_models_first_then_by_name(self) -> None:
        ordered = [m.id for m in sort_models(_models())]
        self.assertEqual(ordered, ["free/beta", "free/gamma", "paid/alpha", "paid/zeta"])

    def test_search_matches_name_or_description_case_insensitively(self) -> None:
        self.assertEqual([m.id for m in filter_models(_models(), "ZETA")], ["paid/zeta"])
        self.assertEqual(
            [m.id for m in filter_models(_models(), "reasoning")], ["paid/alpha"]
        )

    def test_filters_compose_conjunctively_regardless_of_order(self) -> None:
        filters = ModelFilters(free_only=True, vision_only=True)
        forward = filter_models(_models(), "", filters)
        backward = filter_models(list(reversed(_models())), "", filters)
        self.assertEqual([m.id for m in forward], ["free/gamma"])
        self.assertEqual({m.id for m in backward}, {"free/gamma"})

    def test_moderated_filter(self) -> None:
        result = filter_models(_models(), "", ModelFilters(moderated_only=True))
        self.assertEqual([m.id for m in result], ["free/beta"])

    def test_no_filters_returns_everything(self) -> None:
        self.assertEqual(len(filter_models(_models())), len(CATALOG))

    def test_format_price(self) -> None:
        self.assertEqual(format_price("0"), "FREE")
        self.assertEqual(format_price("0.0000005"), "0.50µ")
        self.assertEqual(format_price("0.0005"), "0.50m")
        self.assertEqual(format_price("0.01"), "$0.010000")
        self.assertEqual(format_price("n/a"), "N/A")


class ModelCatalogTests(unittest.IsolatedAsyncioTestCase):
    """Validate refresh against a mocked catalog endpoint."""

    def _catalog(
        self, handler: Any, settings: ChatSettings | None = None
    ) -> tuple[ModelCatalog, SettingsManager, EventBus]:
        bus = EventBus()
        manager = SettingsManager(bus, settings)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        return ModelCatalog(manager, bus, client=client), manager, bus

    async def test_refresh_sorts_and_selects_first_free_model(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"data": CATALOG})

        catalog, settings, bus = self._catalog(handler)
        changed: list[Event] = []
        bus.subscribe(CATALOG_CHANGED, changed.append)

        models = await catalog.refresh()

        self.assertEqual(requests[0].method, "GET")
        self.assertNotIn("authorization", requests[0].headers)
        self.assertEqual(models[0].id, "free/beta")
        self.assertEqual(settings.current.model, "free/beta")
        self.assertFalse(catalog.stale)
        self.assertEqual(len(changed), 1)

    async def test_refresh_keeps_existing_selection(self) -> None:
        catalog, settings, _ = self._catalog(
            lambda request: httpx.Response(200, json={"data": CATALOG}),
            ChatSettings(model="paid/zeta"),
        )
        await catalog.refresh()
        self.assertEqual(settings.current.model, "paid/zeta")

    async def test_default_falls_back_to_first_model_when_none_free(self) -> None:
        paid_only = [item for item in CATALOG if item["id"].startswith("paid/")]
        catalog, settings, _ = self._catalog(
            lambda request: httpx.Response(200, json={"data": paid_only})
        )
        await catalog.refresh()
        self.assertEqual(settings.current.model, "paid/alpha")

    async def test_failed_refresh_keeps_previous_list_and_flags_stale(self) -> None:
        catalog, _, bus = self._catalog(lambda request: httpx.Response(503))
        catalog.load_cached(_models())
        stale: list[Event] = []
        bus.subscribe(CATALOG_STALE, stale.append)

        with self.assertRaises(CatalogFetchError):
            await catalog.refresh()

        self.assertTrue(catalog.stale)
        self.assertEqual(len(catalog.models), len(CATALOG))
        self.assertEqual(len(stale), 1)
        self.assertIn("503", stale[0].data["error"])

    async def test_network_failure_raises_catalog_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        catalog, _, _ = self._catalog(handler)
        with self.assertRaises(CatalogFetchError):
            await catalog.refresh()
        self.assertEqual(catalog.models, [])

    async def test_non_http_failure_still_flags_stale(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.InvalidURL("bad host")

        catalog, _, bus = self._catalog(handler)
        catalog.load_cached(_models())
        stale: list[Event] = []
        bus.subscribe(CATALOG_STALE, stale.append)

        with self.assertRaises(CatalogFetchError):
            await catalog.refresh()

        self.assertTrue(catalog.stale)
        self.assertEqual(len(catalog.models), len(CATALOG))
        self.assertEqual(len(stale), 1)
        self.assertIn("bad host", stale[0].data["error"])

    async def test_malformed_payload_raises_catalog_fetch_error(self) -> None:
        catalog, _, _ = self._catalog(
            lambda request: httpx.Response(200, json={"unexpected": []})
        )
        with self.assertRaises(CatalogFetchError):
            await catalog.refresh()

    async def test_capabilities_lookup(self) -> None:
        catalog, _, _ = self._catalog(lambda request: httpx.Response(200))
        catalog.load_cached(_models())

        vision = catalog.capabilities("free/gamma")
        self.assertTrue(vision.known)
        self.assertTrue(vision.supports_vision)
        self.assertTrue(vision.is_free)
        self.assertFalse(vision.is_moderated)

        moderated = catalog.capabilities("free/beta")
        self.assertTrue(moderated.is_moderated)
        self.assertFalse(moderated.supports_vision)

        unknown = catalog.capabilities("nope")
        self.assertFalse(unknown.known)
        self.assertFalse(unknown.supports_vision)

    async def test_selected_model(self) -> None:
        catalog, settings, _ = self._catalog(lambda request: httpx.Response(200))
        catalog.load_cached(_models())
        self.assertIsNone(catalog.selected_model())
        settings.update(model="paid/alpha")
        selected = catalog.selected_model()
        assert selected is not None
        self.assertEqual(selected.name, "Alpha")


if __name__ == "__main__":
    unittest.main()
