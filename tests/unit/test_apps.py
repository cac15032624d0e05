"""Tests for App forms and the App runner."""

import httpx
import pytest

from hatz_chat.core.apps import (
    AppForm,
    AppRunner,
    filter_apps,
    initial_input_values,
    missing_required_inputs,
    preferred_model,
    validate_inputs,
)
from hatz_chat.core.client import AIModel, App, AppNotQueryableError, InputValidationError

from conftest import APP_ID, APP_PAYLOAD, FILE_UUID, RecordingHandler, completion, make_client

MODELS = [AIModel(name="gpt-4o"), AIModel(name="claude-3-5-sonnet")]


@pytest.fixture
def app() -> App:
    return App.model_validate(APP_PAYLOAD)


class TestFormHelpers:
    """Test form seeding and validation."""

    def test_initial_values_keep_previous(self, app: App) -> None:
        values = initial_input_values(app, {"tone": "formal", "unrelated": "x"})
        assert values == {"document": "", "tone": "formal"}
        assert list(values) == ["document", "tone"]

    def test_missing_required_ignores_whitespace(self, app: App) -> None:
        missing = missing_required_inputs(app, {"document": "   ", "tone": ""})
        assert [item.variable_name for item in missing] == ["document"]

    def test_validate_inputs_names_the_input(self, app: App) -> None:
        with pytest.raises(InputValidationError) as exc_info:
            validate_inputs(app, {"document": ""})
        assert exc_info.value.message == "Missing required input: Document"
        assert exc_info.value.details["field"] == "document"

    def test_validate_inputs_passes(self, app: App) -> None:
        validate_inputs(app, {"document": "text"})

    def test_preferred_model(self, app: App) -> None:
        assert preferred_model(app, MODELS, "gpt-4o") == "claude-3-5-sonnet"
        assert preferred_model(app, [AIModel(name="gpt-4o")], "gpt-4o") == "gpt-4o"

    def test_filter_apps(self, app: App) -> None:
        translator = App.model_validate({"name": "Translator", "description": None})
        apps = [app, translator]

        assert filter_apps(apps, "  SUMMAR ") == [app]
        assert filter_apps(apps, "document") == [app]
        assert filter_apps(apps, "trans") == [translator]
        assert filter_apps(apps, "nothing like it") == []
        assert filter_apps(apps, "   ") == apps
        assert filter_apps(apps, None) == apps

    def test_form_set_value(self, app: App) -> None:
        form = AppForm(app=app, values=initial_input_values(app))
        form.set_value("document", "text")
        assert form.missing == []
        with pytest.raises(KeyError):
            form.set_value("nope", "x")


class TestAppRunner:
    """Test loading and running Apps."""

    @pytest.mark.asyncio
    async def test_load_prepares_form(self) -> None:
        handler = RecordingHandler({f"GET /v1/app/{APP_ID}": lambda request: httpx.Response(200, json=APP_PAYLOAD)})
        async with make_client(handler) as client:
            form = await AppRunner(client).load(
                APP_ID, previous_values={"tone": "dry"}, available_models=MODELS, current_model="gpt-4o"
            )

        assert form.app.id == APP_ID
        assert form.values == {"document": "", "tone": "dry"}
        assert form.model == "claude-3-5-sonnet"

    @pytest.mark.asyncio
    async def test_run_sends_query(self, app: App) -> None:
        handler = RecordingHandler({
            f"POST /v1/app/{APP_ID}/query": lambda request: httpx.Response(200, json=completion("Done"))
        })
        async with make_client(handler) as client:
            result = await AppRunner(client).run(app, "gpt-4o", {"document": "text", "tone": ""}, [FILE_UUID])

        assert result == "Done"
        assert handler.json_body() == {
            "inputs": {"document": "text", "tone": ""},
            "model": "gpt-4o",
            "stream": False,
            "file_uuids": [FILE_UUID],
        }

    @pytest.mark.asyncio
    async def test_missing_input_never_reaches_network(self, app: App) -> None:
        handler = RecordingHandler({})
        async with make_client(handler) as client:
            with pytest.raises(InputValidationError):
                await AppRunner(client).run(app, None, {"document": ""})

        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_placeholder_id_is_not_queryable(self) -> None:
        app = App.model_validate({"name": "No id"})
        handler = RecordingHandler({})
        async with make_client(handler) as client:
            with pytest.raises(AppNotQueryableError):
                await AppRunner(client).run(app, None, {})

        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_run_form(self, app: App) -> None:
        handler = RecordingHandler({
            f"POST /v1/app/{APP_ID}/query": lambda request: httpx.Response(200, json=completion("Done"))
        })
        form = AppForm(app=app, values={"document": "text", "tone": ""}, model=None)
        async with make_client(handler) as client:
            assert await AppRunner(client).run_form(form) == "Done"

        assert "model" not in handler.json_body()
        assert "file_uuids" not in handler.json_body()
