"""Tests for the message status machine."""

from __future__ import annotations

import unittest

from matrix_chat.state import MessageStatus, can_transition


class MessageStatusTests(unittest.TestCase):
    """Validate allowed and rejected status transitions."""

    def test_sending_resolves_to_success_or_error(self) -> None:
        self.assertTrue(can_transition(MessageStatus.SENDING, MessageStatus.SUCCESS))
        self.assertTrue(can_transition(MessageStatus.SENDING, MessageStatus.ERROR))

    def test_error_can_only_go_back_to_sending(self) -> None:
        self.assertTrue(can_transition(MessageStatus.ERROR, MessageStatus.SENDING))
        self.assertFalse(can_transition(MessageStatus.ERROR, MessageStatus.SUCCESS))
        self.assertFalse(can_transition(MessageStatus.ERROR, MessageStatus.ERROR))

    def test_success_is_terminal(self) -> None:
        for status in MessageStatus:
            self.assertFalse(can_transition(MessageStatus.SUCCESS, status))

    def test_values_match_wire_names(self) -> None:
        self.assertEqual(
            [status.value for status in MessageStatus], ["sending", "success", "error"]
        )


if __name__ == "__main__":
    unittest.main()
