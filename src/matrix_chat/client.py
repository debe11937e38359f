"""HTTP client for the remote chat-completion endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .codec import INVALID_RESPONSE_ERROR, decode_completion, describe_error_response
from .exceptions import MatrixChatError, ProtocolError, TransportError

LOGGER = logging.getLogger(__name__)

DEFAULT_COMPLETIONS_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_APP_TITLE = "Matrix Neural Interface"


class CompletionClient:
    """POST request bodies to the completion endpoint and return reply text.

    Every failure surfaces as ``TransportError`` (endpoint unreachable) or
    ``ProtocolError`` (bad status or unexpected body).
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_COMPLETIONS_URL,
        app_title: str = DEFAULT_APP_TITLE,
        referer: str = "",
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.app_title = app_title
        self.referer = referer
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "X-Title": self.app_title,
            "Content-Type": "application/json",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        return headers

    async def complete(self, body: dict[str, Any], api_key: str) -> str:
        """Send one completion request and return the first choice's content."""
        try:
            response = await self._client.post(
                self.endpoint, json=body, headers=self._headers(api_key)
            )
        except Exception as exc:
            raise self._map_exception(exc) from exc

        if not response.is_success:
            message = describe_error_response(
                response.status_code, response.reason_phrase, response.text
            )
            LOGGER.warning(
                "client.completion.rejected",
                extra={
                    "event": "client.completion.rejected",
                    "status_code": response.status_code,
                    "model": body.get("model"),
                },
            )
            raise ProtocolError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(
                INVALID_RESPONSE_ERROR, status_code=response.status_code
            ) from exc
        return decode_completion(payload)

    def _map_exception(self, exc: Exception) -> MatrixChatError:
        if isinstance(exc, MatrixChatError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return TransportError(f"Request to {self.endpoint} timed out.")
        if isinstance(exc, httpx.HTTPError):
            return TransportError(f"Unable to reach completion endpoint: {exc}")
        return TransportError(f"Completion request failed: {exc}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
