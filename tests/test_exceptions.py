"""Tests for domain exception hierarchy."""

from __future__ import annotations

import unittest

from matrix_chat.exceptions import (
    CatalogFetchError,
    ConfigValidationError,
    ConversationNotFoundError,
    InvalidStatusTransitionError,
    MatrixChatError,
    ProtocolError,
    StorageError,
    TransportError,
    ValidationError,
)


class ExceptionHierarchyTests(unittest.TestCase):
    """Validate exception inheritance contract."""

    def test_exception_hierarchy(self) -> None:
        for exc_type in (
            ValidationError,
            CatalogFetchError,
            TransportError,
            ProtocolError,
            StorageError,
            ConversationNotFoundError,
            InvalidStatusTransitionError,
            ConfigValidationError,
        ):
            self.assertTrue(issubclass(exc_type, MatrixChatError), exc_type)
        self.assertTrue(issubclass(MatrixChatError, RuntimeError))

    def test_protocol_error_carries_status_code(self) -> None:
        exc = ProtocolError("HTTP 401: Unauthorized", status_code=401)
        self.assertEqual(exc.status_code, 401)
        self.assertEqual(str(exc), "HTTP 401: Unauthorized")
        self.assertIsNone(ProtocolError("bad body").status_code)


if __name__ == "__main__":
    unittest.main()
