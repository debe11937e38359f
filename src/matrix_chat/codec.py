"""Pure translation between stored messages and the completion wire format."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import json
from typing import Any

from .exceptions import ProtocolError
from .models import ImagePart, ImageUrl, Message, MessageContent, TextPart
from .state import MessageStatus

GENERIC_API_ERROR = "NEURAL.LINK.COMPROMISED"
INVALID_RESPONSE_ERROR = "Invalid API response format"


def build_content(text: str, images: Sequence[str]) -> MessageContent:
    """Return a text part followed by one image part per image, or plain text."""
    if not images:
        return text
    parts: list[TextPart | ImagePart] = [TextPart(text=text)]
    parts.extend(ImagePart(image_url=ImageUrl(url=url)) for url in images)
    return parts


def encode_outbound(
    text: str, images: Sequence[str], supports_vision: bool
) -> MessageContent:
    """Build the current turn's content for the target model.

    Images are only sent to vision-capable models; otherwise they are dropped
    from the request and the turn goes out as plain text.
    """
    if supports_vision and images:
        return build_content(text, images)
    return text


def content_to_wire(content: MessageContent) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    return [part.model_dump(mode="json") for part in content]


def encode_history_for_api(messages: Iterable[Message]) -> list[dict[str, str]]:
    """Flatten history to ``{role, content}`` text turns.

    Error turns are left out entirely and image parts are not replayed; the
    stored messages keep their images for display.
    """
    return [
        {"role": message.role, "content": message.text}
        for message in messages
        if message.status is not MessageStatus.ERROR
    ]


def build_request_body(
    persona: str,
    history: Sequence[dict[str, str]],
    current_content: MessageContent,
    model: str,
) -> dict[str, Any]:
    """Assemble ``{model, messages}`` with the persona as the system turn."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": persona}]
    messages.extend(dict(turn) for turn in history)
    messages.append({"role": "user", "content": content_to_wire(current_content)})
    return {"model": model, "messages": messages}


def decode_completion(payload: Any) -> str:
    """Extract ``choices[0].message.content`` or raise ``ProtocolError``."""
    try:
        message = payload["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProtocolError(INVALID_RESPONSE_ERROR) from exc
    if not isinstance(message, dict) or "content" not in message:
        raise ProtocolError(INVALID_RESPONSE_ERROR)
    content = message["content"]
    if content is None:
        return ""
    if not isinstance(content, str):
        raise ProtocolError(INVALID_RESPONSE_ERROR)
    return content


def describe_error_response(status_code: int, reason: str, body: str) -> str:
    """Turn a non-2xx response into the message shown to the user."""
    try:
        payload = json.loads(body)
    except ValueError:
        return f"HTTP {status_code}: {reason}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            detail = error.get("message")
            if isinstance(detail, str) and detail:
                return f"API ERROR: {detail}"
    return GENERIC_API_ERROR
