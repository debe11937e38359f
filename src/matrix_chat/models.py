"""Conversation, message, settings and catalog data model.

All persisted shapes are pydantic models so snapshots can be validated on
load. Conversation-side models serialize with camelCase keys; catalog models
keep the remote API's snake_case field names.
"""

from __future__ import annotations

import math
import time
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .state import MessageStatus

NEW_SESSION_TITLE = "NEW.SESSION"

DEFAULT_PERSONA = (
    "You are NEURAL.AI - a cyberpunk AI assistant. Be concise, direct, and "
    "slightly mysterious. Use technical terminology when appropriate."
)


def new_id() -> str:
    """Return a process-wide unique identifier."""
    return uuid4().hex


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready, camelCase representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Annotated[TextPart | ImagePart, Field(discriminator="type")]
MessageContent = str | list[ContentPart]


def content_text(content: MessageContent) -> str:
    """Return the text of a content value; the first text part for multimodal."""
    if isinstance(content, str):
        return content
    for part in content:
        if isinstance(part, TextPart):
            return part.text
    return ""


def content_images(content: MessageContent) -> list[str]:
    """Return the image URLs carried by a content value."""
    if isinstance(content, str):
        return []
    return [part.image_url.url for part in content if isinstance(part, ImagePart)]


class RetryData(_CamelModel):
    """Snapshot of a failed send attempt, enough to re-issue it unchanged."""

    original_input: str
    images: list[str] = Field(default_factory=list)
    conversation_id: str


class Message(_CamelModel):
    """One turn of a conversation."""

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    content: MessageContent
    timestamp: int = Field(default_factory=now_ms)
    status: MessageStatus = MessageStatus.SUCCESS
    error: str | None = None
    retry_data: RetryData | None = None

    @property
    def text(self) -> str:
        return content_text(self.content)

    @property
    def images(self) -> list[str]:
        return content_images(self.content)


class Conversation(_CamelModel):
    """An independently titled chat session with append-only history."""

    id: str = Field(default_factory=new_id)
    title: str = NEW_SESSION_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class ChatSettings(_CamelModel):
    """Process-wide user configuration: credential, model and persona."""

    api_key: str = ""
    model: str = ""
    persona: str = DEFAULT_PERSONA


def parse_price(value: str) -> float | None:
    """Parse a catalog price string; ``None`` when it is not a number."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed):
        return None
    return parsed


class Pricing(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt: str = ""
    completion: str = ""
    image: str = ""
    request: str = ""

    @field_validator("prompt", "completion", "image", "request", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)


class Architecture(BaseModel):
    model_config = ConfigDict(extra="allow")

    input_modalities: list[str] = Field(default_factory=list)
    output_modalities: list[str] = Field(default_factory=list)
    tokenizer: str = ""


class TopProvider(BaseModel):
    model_config = ConfigDict(extra="allow")

    is_moderated: bool = False


class ModelData(BaseModel):
    """One entry of the remote model catalog."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    created: int = 0
    description: str = ""
    architecture: Architecture = Field(default_factory=Architecture)
    top_provider: TopProvider = Field(default_factory=TopProvider)
    pricing: Pricing = Field(default_factory=Pricing)
    context_length: int | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_free(self) -> bool:
        """True when both prompt and completion cost parse as zero."""
        return (
            parse_price(self.pricing.prompt) == 0
            and parse_price(self.pricing.completion) == 0
        )

    @property
    def supports_vision(self) -> bool:
        return "image" in self.architecture.input_modalities

    @property
    def is_moderated(self) -> bool:
        return self.top_provider.is_moderated

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
