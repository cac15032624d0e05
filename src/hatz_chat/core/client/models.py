"""
Wire models for the Hatz REST API.

Responses are decoded into pydantic models at the client boundary. The App
model also resolves its identifier, because the list and detail endpoints
have been observed to name the same field differently.
"""

import json
import re
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Ordered fallback list for the App identifier field.
APP_ID_FIELDS = ("id", "app_id", "uuid")

# Prefix for locally generated placeholder ids (never queryable).
MISSING_ID_PREFIX = "missing-id-"

# Structured fields checked on an upload response before pattern matching.
UPLOAD_ID_FIELDS = ("uuid", "file_uuid", "id")

UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)

_CANONICAL_UUID = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)

LONG_FORM_MARKERS = ("long", "paragraph", "text_area", "multiline")


def is_valid_uuid(value: Optional[str]) -> bool:
    """Check that value is a canonical hyphenated UUID."""
    return bool(value) and _CANONICAL_UUID.fullmatch(value) is not None


def first_uuid(text: str) -> Optional[str]:
    """Return the first UUID-shaped token in text, if any."""
    match = UUID_PATTERN.search(text)
    return match.group(0) if match else None


def resolve_app_id(payload: Dict[str, Any]) -> str:
    """Coalesce the App identifier from the known field names.

    Falls back to a fresh placeholder so listing never fails; the placeholder
    differs on every call.
    """
    for field_name in APP_ID_FIELDS:
        value = payload.get(field_name)
        if value is not None:
            return str(value)
    return f"{MISSING_ID_PREFIX}{uuid.uuid4()}"


class ChatMessage(BaseModel):
    """A single conversation message."""
    role: str
    content: str


class AIModel(BaseModel):
    """A chat model offered by the API."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    developer: str = ""
    display_name: str = ""
    max_tokens: int = 0
    vision: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.name


class RemoteFile(BaseModel):
    """Metadata for a file stored on the API side."""
    model_config = ConfigDict(extra="allow")

    uuid: Optional[str] = None
    name: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        extra = self.model_extra or {}
        for candidate in (self.uuid, extra.get("file_uuid"), extra.get("id")):
            if candidate:
                return str(candidate)
        return None

    @property
    def label(self) -> str:
        return self.name or self.file_name or self.identifier or "(unnamed)"


class UploadResult(BaseModel):
    """Outcome of a file upload: the raw body plus the extracted file UUID."""
    raw_body: str
    file_uuid: Optional[str] = None

    @classmethod
    def from_body(cls, raw_body: str) -> "UploadResult":
        return cls(raw_body=raw_body, file_uuid=extract_upload_uuid(raw_body))


def extract_upload_uuid(raw_body: str) -> Optional[str]:
    """Find the uploaded file's UUID.

    Structured fields win; the pattern match over the raw text is the
    fallback for bodies that are not JSON or use an unknown shape.
    """
    try:
        payload = json.loads(raw_body)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        candidates = [payload]
        if isinstance(payload.get("data"), dict):
            candidates.append(payload["data"])
        for candidate in candidates:
            for field_name in UPLOAD_ID_FIELDS:
                value = candidate.get(field_name)
                if isinstance(value, str) and is_valid_uuid(value):
                    return value

    return first_uuid(raw_body)


class AppFile(BaseModel):
    """A file bound into an App."""
    model_config = ConfigDict(extra="ignore")

    size: int = 0
    module: str = ""
    file_id: Optional[str] = None
    type_id: Optional[str] = None
    file_key: str = ""
    file_type: str = ""
    object_id: str = ""
    description: str = ""
    display_name: str = ""
    variable_name: str = ""
    variable_type: str = ""


class AppConstant(BaseModel):
    """A fixed value bound into an App."""
    model_config = ConfigDict(extra="ignore")

    object_id: str = ""
    variable_name: str
    display_name: str = ""
    description: Optional[str] = None
    variable_type: str = ""
    value: str = ""


class AppUserInput(BaseModel):
    """An input the user fills in before running an App."""
    model_config = ConfigDict(extra="ignore")

    position: int = 0
    required: bool = False
    object_id: str = ""
    description: str = ""
    display_name: str = ""
    variable_name: str
    variable_type: str = ""

    @property
    def is_long_form(self) -> bool:
        return is_long_form(self.variable_type)

    @property
    def label(self) -> str:
        return self.display_name or self.variable_name


class PromptSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body: str
    position: int = 0


class App(BaseModel):
    """A server-defined, parameterized prompt template."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: Optional[str] = None
    default_model: Optional[str] = None
    files: List[AppFile] = Field(default_factory=list)
    constants: Optional[List[AppConstant]] = None
    user_inputs: List[AppUserInput] = Field(default_factory=list)
    prompt_sections: List[PromptSection] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coalesce_identifier(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["id"] = resolve_app_id(data)
        # Explicit nulls mean "absent" for the list fields.
        for list_field in ("files", "user_inputs", "prompt_sections"):
            if data.get(list_field) is None:
                data.pop(list_field, None)
        return data

    @property
    def is_queryable(self) -> bool:
        return is_valid_uuid(self.id)

    @property
    def has_placeholder_id(self) -> bool:
        return self.id.startswith(MISSING_ID_PREFIX)

    @property
    def ordered_inputs(self) -> List[AppUserInput]:
        return sorted(self.user_inputs, key=lambda item: item.position)

    @property
    def ordered_prompt_sections(self) -> List[PromptSection]:
        return sorted(self.prompt_sections, key=lambda item: item.position)


def is_long_form(variable_type: str) -> bool:
    """Whether a declared input type calls for a multi-line editor."""
    lowered = (variable_type or "").lower()
    return any(marker in lowered for marker in LONG_FORM_MARKERS)


class ListResponse(BaseModel):
    """Envelope used by the listing endpoints: ``{"data": [...]}``."""
    data: List[Dict[str, Any]]


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    stream: bool = False
    auto_tool_selection: bool = True
    file_uuids: List[str] = Field(default_factory=list)


class AppQueryRequest(BaseModel):
    inputs: Dict[str, str]
    model: Optional[str] = None
    stream: bool = False
    file_uuids: Optional[List[str]] = None


class ChoiceMessage(BaseModel):
    content: str
    role: str


class Choice(BaseModel):
    message: ChoiceMessage


class CompletionResponse(BaseModel):
    """Completion-style response returned by chat and App queries."""
    choices: List[Choice]
    model: Optional[str] = None

    @property
    def first_content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content


class StreamingChunk(BaseModel):
    """One decoded streaming line."""
    type: str
    message: str
