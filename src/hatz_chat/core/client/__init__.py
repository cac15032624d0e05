"""
API client for the Hatz REST API.

This package provides the HTTP client, the wire models, the streaming
decoder and the error taxonomy shared by the rest of the application.
"""

from .errors import (
    HatzError,
    NetworkError,
    ApiStatusError,
    AuthenticationError,
    ResponseDecodeError,
    InputValidationError,
    AppNotQueryableError,
    ConfigurationError,
    SessionBusyError,
    classify_error,
    create_user_friendly_message,
)
from .models import (
    AIModel,
    App,
    AppConstant,
    AppFile,
    AppUserInput,
    ChatMessage,
    PromptSection,
    RemoteFile,
    UploadResult,
    is_long_form,
    is_valid_uuid,
)
from .streaming import (
    StreamDecoder,
    StreamState,
    decode_stream,
)
from .hatz_client import (
    DEFAULT_BASE_URL,
    HatzClient,
    create_hatz_client,
)

__all__ = [
    # Errors
    "HatzError",
    "NetworkError",
    "ApiStatusError",
    "AuthenticationError",
    "ResponseDecodeError",
    "InputValidationError",
    "AppNotQueryableError",
    "ConfigurationError",
    "SessionBusyError",
    "classify_error",
    "create_user_friendly_message",
    # Models
    "AIModel",
    "App",
    "AppConstant",
    "AppFile",
    "AppUserInput",
    "ChatMessage",
    "PromptSection",
    "RemoteFile",
    "UploadResult",
    "is_long_form",
    "is_valid_uuid",
    # Streaming
    "StreamDecoder",
    "StreamState",
    "decode_stream",
    # Client
    "DEFAULT_BASE_URL",
    "HatzClient",
    "create_hatz_client",
]
