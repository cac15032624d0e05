"""Shared fixtures for the Hatz Chat test suite."""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

from hatz_chat.config.settings import HatzChatSettings
from hatz_chat.core.client import HatzClient

TEST_API_KEY = "test-key-123"

APP_ID = "0b6f5a9e-3c1d-4e2f-8a7b-9c0d1e2f3a4b"
FILE_UUID = "9d8c7b6a-5f4e-4d3c-8b2a-1f0e9d8c7b6a"

MODELS_PAYLOAD = {
    "data": [
        {"name": "gpt-4o", "developer": "OpenAI", "display_name": "GPT-4o", "max_tokens": 128000, "vision": True},
        {"name": "claude-3-5-sonnet", "developer": "Anthropic", "display_name": "Claude 3.5 Sonnet", "max_tokens": 200000},
    ]
}

APP_PAYLOAD = {
    "id": APP_ID,
    "name": "Summarizer",
    "description": "Summarize a document",
    "default_model": "claude-3-5-sonnet",
    "files": None,
    "constants": None,
    "user_inputs": [
        {"position": 2, "required": False, "display_name": "Tone", "variable_name": "tone", "variable_type": "short_text"},
        {"position": 1, "required": True, "display_name": "Document", "variable_name": "document", "variable_type": "long_text"},
    ],
    "prompt_sections": [{"body": "Summarize {{document}}", "position": 1}],
}


def completion(content: str) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}], "model": "gpt-4o"}


class RecordingHandler:
    """MockTransport handler that records requests and answers from a route table."""

    def __init__(self, routes: Dict[str, Callable[[httpx.Request], httpx.Response]]):
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.method} {request.url.path}"
        if key not in self.routes:
            return httpx.Response(404, text=f"no route for {key}")
        return self.routes[key](request)

    def json_body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep tests away from the real home directory, .env files and HATZ_CHAT_* variables."""
    for name in list(os.environ):
        if name.startswith("HATZ_CHAT_"):
            monkeypatch.delenv(name, raising=False)

    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.chdir(work)
    yield work

    # load_dotenv writes straight into os.environ.
    for name in list(os.environ):
        if name.startswith("HATZ_CHAT_"):
            del os.environ[name]


@pytest.fixture
def settings(tmp_path: Path) -> HatzChatSettings:
    return HatzChatSettings(config_dir=tmp_path / "config", stream=False)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> HatzClient:
    return HatzClient(api_key=TEST_API_KEY, transport=httpx.MockTransport(handler))


def client_factory_for(handler: Callable[[httpx.Request], httpx.Response]):
    """Session client factory routing every request through handler."""

    def factory(api_key: str, settings: HatzChatSettings) -> HatzClient:
        return HatzClient(
            api_key=api_key,
            base_url=settings.base_url,
            timeout_seconds=settings.timeout,
            transport=httpx.MockTransport(handler),
        )

    return factory
