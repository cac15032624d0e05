"""Tests for HatzSession."""

import asyncio
from pathlib import Path
from typing import List

import httpx
import pytest

from hatz_chat.config.credentials import ApiKeyStore
from hatz_chat.config.settings import HatzChatSettings
from hatz_chat.core.client import (
    ApiStatusError,
    ConfigurationError,
    SessionBusyError,
)
from hatz_chat.core.session import Conversation, HatzSession

from conftest import (
    APP_ID,
    APP_PAYLOAD,
    FILE_UUID,
    MODELS_PAYLOAD,
    RecordingHandler,
    client_factory_for,
    completion,
)


def default_routes() -> dict:
    return {
        "GET /v1/chat/models": lambda request: httpx.Response(200, json=MODELS_PAYLOAD),
        "POST /v1/chat/completions": lambda request: httpx.Response(200, json=completion("Hello back")),
        f"GET /v1/app/{APP_ID}": lambda request: httpx.Response(200, json=APP_PAYLOAD),
        f"POST /v1/app/{APP_ID}/query": lambda request: httpx.Response(200, json=completion("Summary")),
        "POST /v1/files/upload": lambda request: httpx.Response(200, json={"uuid": FILE_UUID}),
    }


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler(default_routes())


@pytest.fixture
def key_store(tmp_path: Path) -> ApiKeyStore:
    return ApiKeyStore(tmp_path / "credentials.json")


@pytest.fixture
def session(settings: HatzChatSettings, key_store: ApiKeyStore, handler: RecordingHandler) -> HatzSession:
    return HatzSession(settings, key_store=key_store, client_factory=client_factory_for(handler))


class TestConversation:
    """Test the in-memory conversation."""

    def test_title_from_first_user_message(self) -> None:
        conversation = Conversation()
        conversation.add_message("user", "What is the capital of France?")
        conversation.add_message("user", "And of Spain?")
        assert conversation.title == "What is the capital of France?"

    def test_long_title_is_truncated(self) -> None:
        conversation = Conversation()
        conversation.add_message("user", "word " * 30)
        assert len(conversation.title) == 40
        assert conversation.title.endswith("…")

    def test_attach_is_idempotent(self) -> None:
        conversation = Conversation()
        conversation.attach(FILE_UUID)
        conversation.attach(FILE_UUID)
        assert conversation.file_uuids == [FILE_UUID]


class TestKeyLifecycle:
    """Test starting, setting and clearing the API key."""

    @pytest.mark.asyncio
    async def test_start_without_key(self, session: HatzSession) -> None:
        await session.start()
        assert not session.has_client
        with pytest.raises(ConfigurationError):
            session.client

    @pytest.mark.asyncio
    async def test_start_with_stored_key(self, session: HatzSession, key_store: ApiKeyStore) -> None:
        key_store.save("stored-key")
        async with session:
            assert session.api_key == "stored-key"
            assert session.has_client

    @pytest.mark.asyncio
    async def test_settings_key_wins(self, tmp_path: Path, key_store: ApiKeyStore, handler: RecordingHandler) -> None:
        key_store.save("stored-key")
        settings = HatzChatSettings(config_dir=tmp_path, api_key="env-key")
        async with HatzSession(settings, key_store=key_store, client_factory=client_factory_for(handler)) as session:
            assert session.api_key == "env-key"

    @pytest.mark.asyncio
    async def test_set_api_key_persists_and_loads_models(
        self, session: HatzSession, key_store: ApiKeyStore, handler: RecordingHandler
    ) -> None:
        await session.set_api_key("  new-key  ")
        try:
            assert key_store.load() == "new-key"
            assert [model.name for model in session.available_models] == ["gpt-4o", "claude-3-5-sonnet"]
            assert handler.requests[0].headers["X-API-KEY"] == "new-key"
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_blank_key_clears(self, session: HatzSession, key_store: ApiKeyStore) -> None:
        await session.set_api_key("new-key")
        await session.set_api_key("   ")
        assert not session.has_client
        assert session.api_key is None
        assert session.available_models == []
        assert key_store.load() is None

    @pytest.mark.asyncio
    async def test_clear_closes_client(self, session: HatzSession) -> None:
        await session.set_api_key("new-key", persist=False, refresh=False)
        client = session.client
        await session.clear_api_key(forget=False)
        assert client.is_closed


class TestModels:
    """Test model selection."""

    @pytest.mark.asyncio
    async def test_first_model_selected_by_default(self, session: HatzSession) -> None:
        await session.set_api_key("k", persist=False)
        assert session.selected_model == "gpt-4o"
        await session.close()

    @pytest.mark.asyncio
    async def test_default_model_setting_is_used(self, tmp_path: Path, key_store: ApiKeyStore, handler: RecordingHandler) -> None:
        settings = HatzChatSettings(config_dir=tmp_path, api_key="k", default_model="claude-3-5-sonnet")
        async with HatzSession(settings, key_store=key_store, client_factory=client_factory_for(handler)) as session:
            await session.refresh_models()
            assert session.selected_model == "claude-3-5-sonnet"

    @pytest.mark.asyncio
    async def test_select_unknown_model(self, session: HatzSession) -> None:
        await session.set_api_key("k", persist=False)
        with pytest.raises(ConfigurationError):
            session.select_model("nope")
        session.select_model("claude-3-5-sonnet")
        assert session.selected_model == "claude-3-5-sonnet"
        await session.close()

    @pytest.mark.asyncio
    async def test_failure_records_last_error(self, session: HatzSession, handler: RecordingHandler) -> None:
        handler.routes["GET /v1/chat/models"] = lambda request: httpx.Response(503, text="maintenance")
        await session.set_api_key("k", persist=False, refresh=False)
        with pytest.raises(ApiStatusError):
            await session.refresh_models()
        assert session.last_error == "maintenance"
        await session.close()


class TestMessaging:
    """Test sending chat messages."""

    @pytest.mark.asyncio
    async def test_send_message_appends_history(self, session: HatzSession, handler: RecordingHandler) -> None:
        await session.set_api_key("k", persist=False)
        reply = await session.send_message("Hello", stream=False)

        assert reply == "Hello back"
        messages = session.current.messages
        assert [(message.role, message.content) for message in messages] == [
            ("user", "Hello"),
            ("assistant", "Hello back"),
        ]
        assert handler.json_body()["model"] == "gpt-4o"
        await session.close()

    @pytest.mark.asyncio
    async def test_history_is_sent(self, session: HatzSession, handler: RecordingHandler) -> None:
        await session.set_api_key("k", persist=False)
        await session.send_message("One", stream=False)
        await session.send_message("Two", stream=False)

        sent = handler.json_body()["messages"]
        assert [message["content"] for message in sent] == ["One", "Hello back", "Two"]
        await session.close()

    @pytest.mark.asyncio
    async def test_blank_message_is_ignored(self, session: HatzSession, handler: RecordingHandler) -> None:
        await session.set_api_key("k", persist=False)
        count = len(handler.requests)
        assert await session.send_message("   ") == ""
        assert len(handler.requests) == count
        assert session.current.is_empty
        await session.close()

    @pytest.mark.asyncio
    async def test_no_model_selected(self, session: HatzSession) -> None:
        await session.set_api_key("k", persist=False, refresh=False)
        session.selected_model = None
        with pytest.raises(ConfigurationError):
            await session.send_message("Hello")
        await session.close()

    @pytest.mark.asyncio
    async def test_streamed_reply_is_collected(self, session: HatzSession, handler: RecordingHandler) -> None:
        handler.routes["POST /v1/chat/completions"] = lambda request: httpx.Response(
            200, content=b'data: {"type":"token","message":"Hel"}\ndata: {"type":"token","message":"lo"}\ndata: [DONE]\n'
        )
        await session.set_api_key("k", persist=False)
        tokens: List[str] = []

        reply = await session.send_message("Hi", stream=True, on_token=tokens.append)

        assert reply == "Hello"
        assert tokens == ["Hel", "lo"]
        assert session.current.messages[-1].content == "Hello"
        await session.close()

    @pytest.mark.asyncio
    async def test_cancelled_stream_keeps_partial_reply(self, session: HatzSession, handler: RecordingHandler) -> None:
        handler.routes["POST /v1/chat/completions"] = lambda request: httpx.Response(
            200, content=b"data: first\ndata: second\n"
        )
        await session.set_api_key("k", persist=False)
        cancel_event = asyncio.Event()

        reply = await session.send_message(
            "Hi", stream=True, on_token=lambda token: cancel_event.set(), cancel_event=cancel_event
        )

        assert reply == " first"
        assert session.current.messages[-1].content == " first"
        await session.close()

    @pytest.mark.asyncio
    async def test_concurrent_send_is_rejected(self, session: HatzSession, handler: RecordingHandler) -> None:
        handler.routes["POST /v1/chat/completions"] = lambda request: httpx.Response(200, content=b"data: a\n")
        await session.set_api_key("k", persist=False)
        release = asyncio.Event()

        async def slow_token(token: str) -> None:
            await release.wait()

        first = asyncio.create_task(session.send_message("One", stream=True, on_token=slow_token))
        await asyncio.sleep(0.05)

        with pytest.raises(SessionBusyError):
            await session.send_message("Two", stream=False)

        release.set()
        assert await first == " a"
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_send_leaves_history_unchanged(self, session: HatzSession, handler: RecordingHandler) -> None:
        handler.routes["POST /v1/chat/completions"] = lambda request: httpx.Response(500, text="upstream down")
        await session.set_api_key("k", persist=False)

        with pytest.raises(ApiStatusError):
            await session.send_message("first", stream=False)
        assert session.current.messages == []
        assert session.last_error == "upstream down"

        handler.routes["POST /v1/chat/completions"] = lambda request: httpx.Response(200, json=completion("ok"))
        assert await session.send_message("second", stream=False) == "ok"

        assert [(message.role, message.content) for message in session.current.messages] == [
            ("user", "second"),
            ("assistant", "ok"),
        ]
        assert handler.json_body()["messages"] == [{"role": "user", "content": "second"}]
        await session.close()


class TestConversationsAndFiles:
    """Test conversation switching and attachments."""

    @pytest.mark.asyncio
    async def test_new_conversation_reuses_empty_one(self, session: HatzSession) -> None:
        first = session.current
        assert session.new_conversation() is first

    @pytest.mark.asyncio
    async def test_new_conversation_and_select(self, session: HatzSession) -> None:
        await session.set_api_key("k", persist=False)
        await session.send_message("Hello", stream=False)
        first = session.current

        second = session.new_conversation()
        assert second is not first
        assert second.is_empty
        assert session.select_conversation(0) is first
        with pytest.raises(IndexError):
            session.select_conversation(5)
        await session.close()

    @pytest.mark.asyncio
    async def test_attach_file(self, session: HatzSession, handler: RecordingHandler, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("# Notes")
        await session.set_api_key("k", persist=False)

        result = await session.attach_file(path)

        assert result.file_uuid == FILE_UUID
        assert session.current.file_uuids == [FILE_UUID]
        assert b"Content-Type: text/plain" in handler.requests[-1].content

        await session.send_message("Summarize the file", stream=False)
        assert handler.json_body()["file_uuids"] == [FILE_UUID]
        await session.close()


class TestApps:
    """Test App loading and running through the session."""

    @pytest.mark.asyncio
    async def test_load_and_run_app(self, session: HatzSession, handler: RecordingHandler) -> None:
        await session.set_api_key("k", persist=False)
        form = await session.load_app(APP_ID, previous_values={"tone": "dry"})

        assert form.model == "claude-3-5-sonnet"
        form.set_value("document", "Long document")
        assert await session.run_app(form) == "Summary"
        assert handler.json_body()["inputs"] == {"document": "Long document", "tone": "dry"}
        await session.close()
