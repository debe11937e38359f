"""Logging bootstrap for matrix-chat with optional JSON output via structlog."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import structlog

APP_LOGGER_PREFIX = "matrix_chat"
NOISY_LIBRARIES = ("httpx", "httpcore")
PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

SECRET_FIELDS = frozenset({"api_key", "apiKey", "authorization", "Authorization"})
REDACTED = "***"


def redact_secrets(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor that masks credential-bearing fields."""
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


class AppOnlyFilter(logging.Filter):
    """Let through records emitted by matrix_chat loggers only."""

    def __init__(self, prefix: str = APP_LOGGER_PREFIX) -> None:
        super().__init__()
        self.prefix = prefix

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name == self.prefix or record.name.startswith(f"{self.prefix}.")


def _json_formatter() -> logging.Formatter:
    shared: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Records from logging.getLogger(__name__) carry their fields as `extra`.
    return structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(
            ensure_ascii=False, separators=(",", ":")
        ),
        foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder(), redact_secrets],
    )


def _private_file_handler(path: str, level: int) -> logging.Handler:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setLevel(level)
    if os.name == "posix":
        try:
            target.chmod(0o600)
        except OSError:
            logging.getLogger(__name__).warning(
                "Unable to enforce 0600 permissions for %s", target
            )
    return handler


def configure_logging(logging_config: dict[str, Any]) -> None:
    """Install root handlers according to the ``[logging]`` config section.

    stderr only shows matrix_chat warnings and above so the CLI output stays
    readable; the optional log file receives every record at ``level``.
    """
    level = getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO)
    formatter = (
        _json_formatter()
        if logging_config.get("structured", True)
        else logging.Formatter(PLAIN_FORMAT)
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(max(level, logging.WARNING))
    console.addFilter(AppOnlyFilter())
    root.addHandler(console)

    log_file_path = logging_config.get("log_file_path")
    if logging_config.get("log_to_file", False) and log_file_path:
        root.addHandler(_private_file_handler(str(log_file_path), level))

    for handler in root.handlers:
        handler.setFormatter(formatter)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
