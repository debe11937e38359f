"""Configuration loading and validation for the matrix chat core."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import tomllib
from typing import Any
from urllib.parse import urlparse

from platformdirs import user_config_path, user_state_path
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
)

from .exceptions import ConfigValidationError

LOGGER = logging.getLogger(__name__)

APP_NAME = "matrix-chat"

CONFIG_DIR = user_config_path(APP_NAME)
CONFIG_PATH = CONFIG_DIR / "config.toml"
STATE_DIR = user_state_path(APP_NAME)

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _require_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


class AppConfig(BaseModel):
    """Application identity sent along with completion requests."""

    title: str = "Matrix Neural Interface"
    referer: str = ""

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        return _require_string(value)

    @field_validator("referer", mode="before")
    @classmethod
    def _normalize_referer(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("referer must be a string.")
        return value.strip()


class ApiConfig(BaseModel):
    """Remote API endpoints and timeouts."""

    base_url: str = "https://openrouter.ai/api/v1"
    timeout: int = Field(default=120, ge=1, le=3600)
    catalog_timeout: int = Field(default=30, ge=1, le=3600)

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str:
        normalized = _require_string(value).rstrip("/")
        parsed = urlparse(normalized)
        if parsed.scheme.lower() not in {"http", "https"}:
            raise ValueError("api.base_url must use http or https scheme.")
        if not parsed.hostname:
            raise ValueError("api.base_url must include a hostname.")
        return normalized

    @property
    def models_url(self) -> str:
        return f"{self.base_url}/models"

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = str(STATE_DIR / "app.log")

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _require_string(value)


class PersistenceConfig(BaseModel):
    """Where conversation, settings and catalog snapshots are kept."""

    enabled: bool = True
    directory: str = str(STATE_DIR / "store")

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, value: Any) -> str:
        return _require_string(value)


class AttachmentsConfig(BaseModel):
    """Limits for inline image attachments."""

    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1, le=100 * 1024 * 1024)


class Config(BaseModel):
    """Root configuration model for all sections."""

    app: AppConfig = AppConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()
    persistence: PersistenceConfig = PersistenceConfig()
    attachments: AttachmentsConfig = AttachmentsConfig()


SECTION_MODELS: dict[str, type[BaseModel]] = {
    "app": AppConfig,
    "api": ApiConfig,
    "logging": LoggingConfig,
    "persistence": PersistenceConfig,
    "attachments": AttachmentsConfig,
}

DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _read_toml(path: Path) -> dict[str, Any]:
    """Parse the user file; an unreadable or invalid file counts as empty."""
    if not path.exists():
        return {}
    if os.name == "posix":
        try:
            path.chmod(0o600)
        except OSError as exc:
            LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        LOGGER.warning("Failed to parse config at %s: %s", path, exc)
        return {}


def _validate_section(name: str, raw: Any) -> dict[str, Any]:
    """Validate one section over its defaults; invalid input reverts the section."""
    model = SECTION_MODELS[name]
    if raw is None:
        return deepcopy(DEFAULT_CONFIG[name])
    if not isinstance(raw, dict):
        LOGGER.warning("Config section [%s] must be a table; using defaults.", name)
        return deepcopy(DEFAULT_CONFIG[name])
    try:
        return model.model_validate({**DEFAULT_CONFIG[name], **raw}).model_dump()
    except ValidationError as exc:
        LOGGER.warning("Config section [%s] is invalid, using defaults: %s", name, exc)
        return deepcopy(DEFAULT_CONFIG[name])


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML and validate it section by section.

    Unknown sections are ignored. The optional ``config_path`` argument is
    intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)
    raw = _read_toml(target_path)
    try:
        return {name: _validate_section(name, raw.get(name)) for name in SECTION_MODELS}
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc
