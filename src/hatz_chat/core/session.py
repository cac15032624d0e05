"""
Session state for Hatz Chat.

HatzSession is the explicit context object shared by the CLI commands: it
owns the API key, the client built from it, the loaded models and Apps, and
the conversations of the current run. Setting a key opens a client; clearing
it closes the client and drops everything fetched with it.
"""

import asyncio
import logging
import mimetypes
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, List, Mapping, Optional, Sequence, Set

from ..config.credentials import ApiKeyStore
from ..config.settings import HatzChatSettings
from ..utils.formatting import conversation_title
from .apps import AppForm, AppRunner
from .client import (
    AIModel,
    App,
    ChatMessage,
    ConfigurationError,
    HatzClient,
    HatzError,
    RemoteFile,
    SessionBusyError,
    UploadResult,
    classify_error,
)
from .client.streaming import TokenCallback, emit_token

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, HatzChatSettings], HatzClient]

DEFAULT_TITLE = "New Chat"


def default_client_factory(api_key: str, settings: HatzChatSettings) -> HatzClient:
    return HatzClient(
        api_key=api_key,
        base_url=settings.base_url,
        timeout_seconds=settings.timeout,
    )


@dataclass
class Conversation:
    """A chat kept in memory for the duration of the session."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    messages: List[ChatMessage] = field(default_factory=list)
    file_uuids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    def add_message(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        if role == "user" and self.title == DEFAULT_TITLE:
            self.title = conversation_title(content)
        return message

    def attach(self, file_uuid: str) -> None:
        if file_uuid not in self.file_uuids:
            self.file_uuids.append(file_uuid)

    @property
    def is_empty(self) -> bool:
        return not self.messages


class HatzSession:
    """Explicit session context: key, client, catalog and conversations."""

    def __init__(
        self,
        settings: HatzChatSettings,
        key_store: Optional[ApiKeyStore] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.settings = settings
        self.key_store = key_store or ApiKeyStore(settings.credentials_path)
        self._client_factory = client_factory or default_client_factory

        self._api_key: Optional[str] = None
        self._client: Optional[HatzClient] = None

        self.available_models: List[AIModel] = []
        self.apps: List[App] = []
        self.selected_model: Optional[str] = settings.default_model
        self.last_error: Optional[str] = None

        self.conversations: List[Conversation] = [Conversation()]
        self._current_index = 0
        self._busy: Set[str] = set()

    async def __aenter__(self) -> "HatzSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Key lifecycle

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    @property
    def has_client(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> HatzClient:
        if self._client is None:
            raise ConfigurationError("No API key configured", config_field="api_key")
        return self._client

    async def start(self) -> None:
        """Open a client from the configured or stored key, if any.

        A key from the environment or settings files wins over the stored one.
        """
        api_key = self.settings.api_key or self.key_store.load()
        if api_key:
            await self._open_client(api_key)
        else:
            logger.debug("Session started without an API key")

    async def set_api_key(self, api_key: str, persist: bool = True, refresh: bool = True) -> None:
        """
        Replace the session key.

        Args:
            api_key: New key; blank clears the session instead
            persist: Store the key for later runs
            refresh: Load the model list with the new key
        """
        api_key = api_key.strip()
        if not api_key:
            await self.clear_api_key()
            return

        if persist:
            self.key_store.save(api_key)

        await self._open_client(api_key)
        if refresh:
            await self.refresh_models()

    async def clear_api_key(self, forget: bool = True) -> None:
        """Close the client and drop everything loaded with the key."""
        if forget:
            self.key_store.clear()
        await self._close_client()
        self._api_key = None
        self.available_models = []
        self.apps = []
        self.last_error = None
        logger.info("API key cleared")

    async def close(self) -> None:
        await self._close_client()

    async def _open_client(self, api_key: str) -> None:
        await self._close_client()
        self._client = self._client_factory(api_key, self.settings)
        self._api_key = api_key
        self.available_models = []
        self.apps = []

    async def _close_client(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    # Catalog

    async def refresh_models(self) -> List[AIModel]:
        """Reload the model list and fix up the selected model."""
        async with self._tracking_errors():
            self.available_models = await self.client.fetch_models()

        names = [model.name for model in self.available_models]
        if self.selected_model not in names:
            if self.settings.default_model in names:
                self.selected_model = self.settings.default_model
            else:
                self.selected_model = names[0] if names else None
        logger.info(f"Loaded {len(names)} models, selected {self.selected_model}")
        return self.available_models

    async def refresh_apps(self) -> List[App]:
        async with self._tracking_errors():
            self.apps = await self.client.fetch_apps()
        return self.apps

    async def list_files(self) -> List[RemoteFile]:
        async with self._tracking_errors():
            return await self.client.list_files()

    def select_model(self, name: str) -> None:
        names = {model.name for model in self.available_models}
        if names and name not in names:
            raise ConfigurationError(f"Unknown model '{name}'", config_field="model")
        self.selected_model = name

    # Conversations

    @property
    def current(self) -> Conversation:
        return self.conversations[self._current_index]

    def new_conversation(self) -> Conversation:
        """Start a fresh conversation, reusing the current one if still empty."""
        if self.current.is_empty and not self.current.file_uuids:
            return self.current
        self.conversations.append(Conversation())
        self._current_index = len(self.conversations) - 1
        return self.current

    def select_conversation(self, index: int) -> Conversation:
        if not 0 <= index < len(self.conversations):
            raise IndexError(f"No conversation #{index + 1}")
        self._current_index = index
        return self.current

    async def send_message(
        self,
        text: str,
        stream: Optional[bool] = None,
        on_token: Optional[TokenCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Send a user message in the current conversation.

        Args:
            text: Message text; blank input is ignored
            stream: Stream the reply (defaults to the settings value)
            on_token: Receives streamed tokens as they arrive
            cancel_event: Set to stop a streamed reply early
            model: Model override for this message

        Returns:
            The assistant reply (the tokens received so far if cancelled)

        Raises:
            HatzError: The request failed; the conversation is left unchanged
        """
        text = text.strip()
        if not text:
            return ""

        target_model = model or self.selected_model
        if not target_model:
            raise ConfigurationError("No model selected", config_field="model")

        use_stream = self.settings.stream if stream is None else stream
        conversation = self.current

        async with self._exclusive(f"chat:{conversation.id}"):
            # The user turn is recorded only once the request succeeds.
            pending = [*conversation.messages, ChatMessage(role="user", content=text)]
            received: List[str] = []

            async def collect(token: str) -> None:
                received.append(token)
                await emit_token(on_token, token)

            async with self._tracking_errors():
                final_text = await self.client.chat_complete(
                    model=target_model,
                    messages=pending,
                    file_uuids=list(conversation.file_uuids),
                    stream=use_stream,
                    on_token=collect,
                    cancel_event=cancel_event,
                )

            reply = "".join(received) if use_stream else final_text
            conversation.add_message("user", text)
            conversation.add_message("assistant", reply)
            return reply

    async def attach_file(self, path: Path, mime_type: Optional[str] = None) -> UploadResult:
        """Upload a file and attach it to the current conversation."""
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        data = path.read_bytes()
        async with self._tracking_errors():
            result = await self.client.upload_file(data, path.name, mime_type)

        if result.file_uuid:
            self.current.attach(result.file_uuid)
        else:
            logger.warning(f"Upload of {path.name} returned no file UUID; not attached")
        return result

    # Apps

    def app_runner(self) -> AppRunner:
        return AppRunner(self.client)

    async def load_app(self, app_id: str, previous_values: Optional[Mapping[str, str]] = None) -> AppForm:
        async with self._tracking_errors():
            return await self.app_runner().load(
                app_id,
                previous_values=previous_values,
                available_models=self.available_models,
                current_model=self.selected_model,
            )

    async def run_app(self, form: AppForm, file_uuids: Sequence[str] = ()) -> str:
        """Run an App form; only one run per App may be in flight."""
        async with self._exclusive(f"app:{form.app.id}"):
            async with self._tracking_errors():
                return await self.app_runner().run_form(form, file_uuids)

    # Internals

    @asynccontextmanager
    async def _exclusive(self, key: str) -> AsyncIterator[None]:
        if key in self._busy:
            raise SessionBusyError(key=key)
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)

    @asynccontextmanager
    async def _tracking_errors(self) -> AsyncIterator[None]:
        """Record the last error for display, then re-raise it classified."""
        try:
            yield
        except HatzError as e:
            self.last_error = e.message
            raise
        except Exception as e:
            error = classify_error(e)
            self.last_error = error.message
            raise error from e
        else:
            self.last_error = None
