"""Domain exception hierarchy for the matrix chat core."""

from __future__ import annotations


class MatrixChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class ValidationError(MatrixChatError):
    """Raised when a send is rejected before any state mutation."""


class CatalogFetchError(MatrixChatError):
    """Raised when the model catalog cannot be fetched."""


class TransportError(MatrixChatError):
    """Raised when the completion endpoint cannot be reached."""


class ProtocolError(MatrixChatError):
    """Raised on a non-2xx response or a response missing the completion."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(MatrixChatError):
    """Raised when a persisted blob cannot be read or written."""


class ConversationNotFoundError(MatrixChatError):
    """Raised when an operation targets an unknown conversation."""


class InvalidStatusTransitionError(MatrixChatError):
    """Raised when a message status change is not allowed."""


class ConfigValidationError(MatrixChatError):
    """Raised when configuration cannot be validated safely."""
