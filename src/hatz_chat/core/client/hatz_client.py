"""
HTTP client for the Hatz REST API.

All network interaction goes through HatzClient. It turns typed requests
into HTTP calls against the fixed API origin and turns responses into typed
results or HatzError subclasses. There is no retry or backoff: a failure is
reported once and the user re-triggers the action.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ... import USER_AGENT
from .errors import (
    HatzError,
    ConfigurationError,
    ResponseDecodeError,
    classify_error,
    error_from_response,
)
from .models import (
    AIModel,
    App,
    AppQueryRequest,
    ChatCompletionRequest,
    ChatMessage,
    CompletionResponse,
    ListResponse,
    RemoteFile,
    UploadResult,
)
from .streaming import TokenCallback, decode_stream

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ai.hatz.ai/v1"
API_KEY_HEADER = "X-API-KEY"

ModelT = TypeVar("ModelT", bound=BaseModel)


class HatzClient:
    """Async client for the Hatz chat, file and App endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: Optional[float] = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("API key is required", config_field="api_key")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                API_KEY_HEADER: api_key,
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "HatzClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    # Models and files

    async def fetch_models(self) -> List[AIModel]:
        """List the chat models available to this key."""
        payload = await self._request_json("GET", "/chat/models")
        return self._decode_list(payload, AIModel)

    async def list_files(self) -> List[RemoteFile]:
        """List files previously uploaded with this key."""
        payload = await self._request_json("GET", "/files/")
        return self._decode_list(payload, RemoteFile)

    async def upload_file(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        """
        Upload a file as multipart form data (single field ``file``).

        Args:
            data: File contents
            filename: Name sent in the Content-Disposition header
            mime_type: Content type of the file part

        Returns:
            The raw response body and the file UUID found in it, if any
        """
        response = await self._send(
            "POST",
            "/files/upload",
            files={"file": (filename, data, mime_type)},
        )
        try:
            raw_body = response.content.decode("utf-8")
        except UnicodeDecodeError:
            raw_body = ""
        result = UploadResult.from_body(raw_body)
        logger.info(f"Uploaded {filename} ({len(data)} bytes), file uuid: {result.file_uuid}")
        return result

    # Chat

    async def chat_complete(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        file_uuids: Sequence[str] = (),
        stream: bool = False,
        on_token: Optional[TokenCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Run a chat completion.

        Without streaming, the first choice's content is returned. With
        streaming, tokens are delivered through ``on_token`` as they arrive
        and the return value is empty.

        Args:
            model: Model name
            messages: Conversation so far
            file_uuids: Uploaded files to make available to the model
            stream: Whether to stream the response
            on_token: Callback for streamed tokens (sync or async)
            cancel_event: Set to stop reading a streamed response

        Returns:
            Final text for non-streamed calls, "" for streamed calls
        """
        request = ChatCompletionRequest(
            model=model,
            messages=list(messages),
            stream=stream,
            file_uuids=list(file_uuids),
        )
        body = request.model_dump()

        if not stream:
            payload = await self._request_json("POST", "/chat/completions", json=body)
            return self._decode(payload, CompletionResponse).first_content

        await self._stream_completion(body, on_token, cancel_event)
        return ""

    async def _stream_completion(
        self,
        body: Dict[str, Any],
        on_token: Optional[TokenCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        logger.debug(f"POST /chat/completions (stream, model={body.get('model')})")
        try:
            async with self._client.stream("POST", "/chat/completions", json=body) as response:
                if not response.is_success:
                    error_body = await response.aread()
                    error = error_from_response(response.status_code, error_body)
                    logger.warning(f"Streaming request failed: {error.status} {error.message}")
                    raise error

                await decode_stream(response.aiter_bytes(), on_token, cancel_event)
        except HatzError:
            raise
        except httpx.HTTPError as e:
            error = classify_error(e)
            logger.error(f"Streaming transport error: {error}")
            raise error from e

    # Apps

    async def fetch_apps(self) -> List[App]:
        """List the Apps visible to this key."""
        payload = await self._request_json("GET", "/app/list")
        apps = self._decode_list(payload, App)
        missing = [app.name for app in apps if app.has_placeholder_id]
        if missing:
            logger.warning(f"Apps without an identifier in list response: {', '.join(missing)}")
        return apps

    async def fetch_app(self, app_id: str) -> App:
        """Fetch the full definition of one App."""
        payload = await self._request_json("GET", f"/app/{app_id}")
        return self._decode(payload, App)

    async def query_app(
        self,
        app_id: str,
        model: Optional[str],
        inputs: Dict[str, str],
        file_uuids: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Run an App with the given inputs.

        Args:
            app_id: App UUID
            model: Model override, or None for the App's default
            inputs: Variable name to value
            file_uuids: Uploaded files to pass along

        Returns:
            The first choice's content
        """
        request = AppQueryRequest(
            inputs=dict(inputs),
            model=model,
            stream=False,
            file_uuids=list(file_uuids) if file_uuids else None,
        )
        payload = await self._request_json(
            "POST",
            f"/app/{app_id}/query",
            json=request.model_dump(exclude_none=True),
        )
        return self._decode(payload, CompletionResponse).first_content

    # Helpers

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and enforce the 2xx contract."""
        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            error = classify_error(e)
            logger.error(f"{method} {path} failed: {error}")
            raise error from e

        if not response.is_success:
            error = error_from_response(response.status_code, response.content)
            logger.warning(f"{method} {path} returned {response.status_code}")
            raise error

        return response

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ResponseDecodeError(
                f"Invalid JSON from {path}: {e}", status=response.status_code, original_error=e
            ) from e

    @staticmethod
    def _decode(payload: Any, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ResponseDecodeError(
                f"Unexpected {model.__name__} response: {e}", original_error=e
            ) from e

    @classmethod
    def _decode_list(cls, payload: Any, model: Type[ModelT]) -> List[ModelT]:
        envelope = cls._decode(payload, ListResponse)
        return [cls._decode(item, model) for item in envelope.data]


def create_hatz_client(
    api_key: str,
    base_url: str = DEFAULT_BASE_URL,
    timeout_seconds: Optional[float] = 60.0,
    **kwargs: Any,
) -> HatzClient:
    """Create a Hatz client with the given configuration."""
    return HatzClient(api_key=api_key, base_url=base_url, timeout_seconds=timeout_seconds, **kwargs)
