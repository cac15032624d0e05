"""
App form handling and execution.

Apps declare user inputs; before a query is sent the form is validated
locally so a missing required input never reaches the network.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .client import (
    AIModel,
    App,
    AppNotQueryableError,
    AppUserInput,
    HatzClient,
    InputValidationError,
    is_long_form,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AppForm",
    "AppRunner",
    "filter_apps",
    "initial_input_values",
    "is_long_form",
    "preferred_model",
    "validate_inputs",
]


def initial_input_values(app: App, previous: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Seed the form values for an App, keeping what the user already typed."""
    previous = previous or {}
    return {
        user_input.variable_name: previous.get(user_input.variable_name, "")
        for user_input in app.ordered_inputs
    }


def missing_required_inputs(app: App, values: Mapping[str, str]) -> List[AppUserInput]:
    """Return required inputs whose value is empty after trimming."""
    return [
        user_input
        for user_input in app.ordered_inputs
        if user_input.required and not (values.get(user_input.variable_name) or "").strip()
    ]


def validate_inputs(app: App, values: Mapping[str, str]) -> None:
    """Raise InputValidationError for the first missing required input."""
    missing = missing_required_inputs(app, values)
    if missing:
        first = missing[0]
        raise InputValidationError(
            f"Missing required input: {first.label}",
            field=first.variable_name,
        )


def filter_apps(apps: Iterable[App], query: Optional[str]) -> List[App]:
    """Apps whose name or description contains the query, ignoring case.

    A blank query keeps every App.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return list(apps)
    return [
        app for app in apps
        if needle in app.name.lower() or needle in (app.description or "").lower()
    ]


def preferred_model(
    app: App,
    available: Iterable[AIModel],
    current: Optional[str] = None,
) -> Optional[str]:
    """Prefer the App's default model when the key has access to it."""
    names = {model.name for model in available}
    if app.default_model and app.default_model in names:
        return app.default_model
    return current


@dataclass
class AppForm:
    """An App together with the values entered for its inputs."""
    app: App
    values: Dict[str, str] = field(default_factory=dict)
    model: Optional[str] = None

    def set_value(self, variable_name: str, value: str) -> None:
        if variable_name not in self.values:
            raise KeyError(f"App '{self.app.name}' has no input '{variable_name}'")
        self.values[variable_name] = value

    @property
    def missing(self) -> List[AppUserInput]:
        return missing_required_inputs(self.app, self.values)


class AppRunner:
    """Loads App definitions and runs them through the API client."""

    def __init__(self, client: HatzClient):
        self.client = client

    async def load(
        self,
        app_id: str,
        previous_values: Optional[Mapping[str, str]] = None,
        available_models: Sequence[AIModel] = (),
        current_model: Optional[str] = None,
    ) -> AppForm:
        """Fetch an App and prepare its form."""
        app = await self.client.fetch_app(app_id)
        form = AppForm(
            app=app,
            values=initial_input_values(app, previous_values),
            model=preferred_model(app, available_models, current_model),
        )
        logger.debug(f"Loaded App {app.name} with {len(app.user_inputs)} inputs")
        return form

    async def run(
        self,
        app: App,
        model: Optional[str],
        values: Mapping[str, str],
        file_uuids: Sequence[str] = (),
    ) -> str:
        """
        Validate the inputs and query the App.

        Args:
            app: App to run
            model: Model override, or None for the App default
            values: Variable name to value
            file_uuids: Uploaded files to pass along

        Returns:
            The App's answer text
        """
        if not app.is_queryable:
            raise AppNotQueryableError(app_id=app.id)

        validate_inputs(app, values)

        logger.info(f"Running App {app.name} ({app.id}) with model {model or 'default'}")
        return await self.client.query_app(
            app.id,
            model=model,
            inputs=dict(values),
            file_uuids=list(file_uuids),
        )

    async def run_form(self, form: AppForm, file_uuids: Sequence[str] = ()) -> str:
        return await self.run(form.app, form.model, form.values, file_uuids)
