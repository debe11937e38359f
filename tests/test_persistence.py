"""Tests for key/value storage and the snapshot mirror."""

from __future__ import annotations

import json
from pathlib import Path
import tempfile
import unittest

from matrix_chat.events import EventBus
from matrix_chat.exceptions import StorageError
from matrix_chat.models import (
    ChatSettings,
    Conversation,
    Message,
    ModelData,
    RetryData,
)
from matrix_chat.persistence import (
    CONVERSATIONS_KEY,
    CURRENT_CONVERSATION_KEY,
    MODELS_KEY,
    SETTINGS_KEY,
    JsonFileStore,
    MemoryStore,
    StatePersistence,
)
from matrix_chat.settings import SettingsManager
from matrix_chat.state import MessageStatus
from matrix_chat.store import ConversationStore
from matrix_chat.codec import build_content


class BrokenStore:
    """Backend whose every operation fails."""

    def load(self, key: str) -> str | None:
        raise StorageError("disk on fire")

    def save(self, key: str, value: str) -> None:
        raise StorageError("disk on fire")


def _sample_conversation() -> Conversation:
    conversation = Conversation(title="HELLO")
    conversation.messages.append(
        Message(role="user", content=build_content("hello", ["data:image/png;base64,AA"]))
    )
    conversation.messages.append(
        Message(
            role="assistant",
            content="ERROR: HTTP 401: Unauthorized",
            status=MessageStatus.ERROR,
            error="ERROR: HTTP 401: Unauthorized",
            retry_data=RetryData(
                original_input="hello",
                images=["data:image/png;base64,AA"],
                conversation_id=conversation.id,
            ),
        )
    )
    return conversation


class JsonFileStoreTests(unittest.TestCase):
    """Validate file-backed key/value semantics."""

    def test_missing_key_loads_as_none(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonFileStore(Path(temp_dir) / "store")
            self.assertIsNone(store.load(SETTINGS_KEY))

    def test_save_then_load_and_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonFileStore(Path(temp_dir) / "store")
            store.save(SETTINGS_KEY, '{"a": 1}')
            store.save(SETTINGS_KEY, '{"a": 2}')
            self.assertEqual(store.load(SETTINGS_KEY), '{"a": 2}')
            leftovers = [p.name for p in store.directory.iterdir() if p.suffix == ".tmp"]
            self.assertEqual(leftovers, [])

    def test_rejects_path_like_keys(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonFileStore(temp_dir)
            with self.assertRaises(StorageError):
                store.save("../escape", "{}")


class StatePersistenceTests(unittest.TestCase):
    """Validate snapshot round-trips and tolerance of bad data."""

    def test_round_trip_of_all_four_keys(self) -> None:
        persistence = StatePersistence(MemoryStore(), EventBus())
        conversations = [_sample_conversation(), Conversation()]
        settings = ChatSettings(api_key="sk-1", model="free/model", persona="Be brief.")
        models = [
            ModelData.model_validate(
                {
                    "id": "free/model",
                    "name": "Free",
                    "architecture": {"input_modalities": ["text", "image"]},
                    "pricing": {"prompt": "0", "completion": "0"},
                    "per_request_limits": None,
                }
            )
        ]

        persistence.save_conversations(conversations)
        persistence.save_settings(settings)
        persistence.save_current_conversation_id(conversations[0].id)
        persistence.save_models(models)

        loaded = persistence.load_conversations()
        assert loaded is not None
        self.assertEqual(
            [c.to_payload() for c in loaded], [c.to_payload() for c in conversations]
        )
        loaded_settings = persistence.load_settings()
        assert loaded_settings is not None
        self.assertEqual(loaded_settings.to_payload(), settings.to_payload())
        self.assertEqual(persistence.load_current_conversation_id(), conversations[0].id)
        loaded_models = persistence.load_models()
        assert loaded_models is not None
        self.assertEqual(
            [m.to_payload() for m in loaded_models], [m.to_payload() for m in models]
        )

    def test_retry_data_survives_reload(self) -> None:
        persistence = StatePersistence(MemoryStore(), EventBus())
        persistence.save_conversations([_sample_conversation()])
        loaded = persistence.load_conversations()
        assert loaded is not None
        failed = loaded[0].messages[-1]
        self.assertIs(failed.status, MessageStatus.ERROR)
        assert failed.retry_data is not None
        self.assertEqual(failed.retry_data.original_input, "hello")
        self.assertEqual(loaded[0].messages[0].images, ["data:image/png;base64,AA"])

    def test_missing_keys_load_as_none(self) -> None:
        persistence = StatePersistence(MemoryStore(), EventBus())
        self.assertIsNone(persistence.load_conversations())
        self.assertIsNone(persistence.load_settings())
        self.assertIsNone(persistence.load_current_conversation_id())
        self.assertIsNone(persistence.load_models())

    def test_malformed_json_is_treated_as_absent(self) -> None:
        backend = MemoryStore()
        for key in (CONVERSATIONS_KEY, SETTINGS_KEY, CURRENT_CONVERSATION_KEY, MODELS_KEY):
            backend.save(key, "not valid json{{")
        persistence = StatePersistence(backend, EventBus())
        with self.assertLogs("matrix_chat.persistence", level="WARNING"):
            self.assertIsNone(persistence.load_conversations())
        self.assertIsNone(persistence.load_settings())
        self.assertIsNone(persistence.load_current_conversation_id())
        self.assertIsNone(persistence.load_models())

    def test_schema_invalid_payload_is_treated_as_absent(self) -> None:
        backend = MemoryStore()
        backend.save(CONVERSATIONS_KEY, json.dumps([{"messages": "nope"}]))
        backend.save(MODELS_KEY, json.dumps([{"name": "no id"}]))
        persistence = StatePersistence(backend, EventBus())
        self.assertIsNone(persistence.load_conversations())
        self.assertIsNone(persistence.load_models())

    def test_storage_failures_are_logged_not_raised(self) -> None:
        persistence = StatePersistence(BrokenStore(), EventBus())
        with self.assertLogs("matrix_chat.persistence", level="WARNING") as logs:
            persistence.save_settings(ChatSettings())
            self.assertIsNone(persistence.load_settings())
        self.assertEqual(len(logs.records), 2)


class MirrorTests(unittest.TestCase):
    """Validate that store and settings mutations reach storage."""

    def test_mutations_are_mirrored_while_attached(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            bus = EventBus()
            backend = JsonFileStore(temp_dir)
            persistence = StatePersistence(backend, bus)
            persistence.attach()
            store = ConversationStore(bus)
            settings = SettingsManager(bus)

            conversation = store.create_conversation()
            store.append_message(conversation.id, Message(role="user", content="hi"))
            settings.update(api_key="sk-live")

            saved = json.loads(backend.load(CONVERSATIONS_KEY) or "null")
            self.assertEqual(saved[0]["id"], conversation.id)
            self.assertEqual(saved[0]["messages"][0]["content"], "hi")
            self.assertEqual(saved[0]["title"], "HI")
            self.assertEqual(persistence.load_current_conversation_id(), conversation.id)
            self.assertEqual(json.loads(backend.load(SETTINGS_KEY) or "{}")["apiKey"], "sk-live")

            persistence.detach()
            store.create_conversation()
            saved_after = json.loads(backend.load(CONVERSATIONS_KEY) or "null")
            self.assertEqual(len(saved_after), 1)

    def test_failed_mirror_does_not_break_the_store(self) -> None:
        bus = EventBus()
        StatePersistence(BrokenStore(), bus).attach()
        store = ConversationStore(bus)
        with self.assertLogs("matrix_chat.persistence", level="WARNING"):
            conversation = store.create_conversation()
        self.assertEqual(store.current_id, conversation.id)


if __name__ == "__main__":
    unittest.main()
