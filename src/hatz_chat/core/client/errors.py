"""
Structured error system for the Hatz API client.

Every failure surfaces as a HatzError subclass carrying a single descriptive
message. The taxonomy follows what can actually go wrong talking to the
API: no response at all, a non-2xx response, or a body that does not match
the expected shape. Local validation failures share the same base so the
UI can print any of them the same way.
"""

from typing import Any, Dict, Optional
import json
import logging

import httpx
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class HatzError(Exception):
    """Base exception for all Hatz client errors."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "details": self.details,
            "type": self.__class__.__name__
        }

    def __str__(self) -> str:
        return self.message


class NetworkError(HatzError):
    """No response was received (connection, DNS, timeout, broken stream)."""

    def __init__(
        self,
        message: str = "Network error",
        **kwargs
    ):
        super().__init__(message, code="NETWORK_ERROR", **kwargs)


class ApiStatusError(HatzError):
    """The API answered outside the 2xx range.

    The message is the response body text when the API sent one, otherwise
    a generic ``HTTP <status>`` line.
    """

    def __init__(
        self,
        message: str,
        status: int,
        **kwargs
    ):
        kwargs.setdefault("code", "HTTP_STATUS_ERROR")
        super().__init__(message, status=status, **kwargs)


class AuthenticationError(ApiStatusError):
    """The API rejected the key (401/403)."""

    def __init__(
        self,
        message: str = "Authentication failed",
        status: int = 401,
        **kwargs
    ):
        super().__init__(message, status=status, code="AUTHENTICATION_ERROR", **kwargs)


class ResponseDecodeError(HatzError):
    """A 2xx response body did not decode into the expected shape."""

    def __init__(
        self,
        message: str = "Could not decode API response",
        **kwargs
    ):
        super().__init__(message, code="DECODE_ERROR", **kwargs)


class InputValidationError(HatzError):
    """A required App input is missing. Raised before any request is made."""

    def __init__(
        self,
        message: str = "Invalid input",
        field: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code="INPUT_VALIDATION_ERROR", **kwargs)
        if field:
            self.details["field"] = field


class AppNotQueryableError(HatzError):
    """The App has no valid UUID and cannot be queried."""

    def __init__(
        self,
        message: str = "This App is missing a valid UUID, so it cannot be queried.",
        app_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code="APP_NOT_QUERYABLE", **kwargs)
        if app_id:
            self.details["app_id"] = app_id


class ConfigurationError(HatzError):
    """Error related to client configuration."""

    def __init__(
        self,
        message: str = "Configuration error",
        config_field: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code="CONFIGURATION_ERROR", **kwargs)
        if config_field:
            self.details["config_field"] = config_field


class SessionBusyError(HatzError):
    """A run is already in flight for this conversation or App."""

    def __init__(
        self,
        message: str = "A request is already running",
        key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code="SESSION_BUSY", **kwargs)
        if key:
            self.details["key"] = key


def status_error_message(status: int, body: bytes) -> str:
    """Build the error message for a non-2xx response body."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        text = ""
    return text if text else f"HTTP {status}"


def error_from_response(status: int, body: bytes) -> ApiStatusError:
    """Create the status error for a non-2xx response."""
    message = status_error_message(status, body)
    if status in (401, 403):
        return AuthenticationError(message, status=status)
    return ApiStatusError(message, status=status)


def classify_error(error: Exception) -> HatzError:
    """
    Classify a generic exception into a structured HatzError.

    Args:
        error: The original exception

    Returns:
        Classified HatzError instance
    """
    if isinstance(error, HatzError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return error_from_response(response.status_code, response.content)

    if isinstance(error, httpx.TimeoutException):
        return NetworkError(f"Request timed out: {error}", original_error=error)

    if isinstance(error, (httpx.TransportError, httpx.StreamError)):
        message = str(error) or error.__class__.__name__
        return NetworkError(message, original_error=error)

    if isinstance(error, (ValidationError, json.JSONDecodeError, UnicodeDecodeError)):
        return ResponseDecodeError(f"Could not decode API response: {error}", original_error=error)

    return HatzError(str(error) or error.__class__.__name__, original_error=error)


def create_user_friendly_message(error: HatzError) -> str:
    """
    Create a user-friendly error message.

    Args:
        error: The HatzError to convert

    Returns:
        Single-line message suitable for display
    """
    if isinstance(error, AuthenticationError):
        return f"Authentication failed ({error.status}). Check your Hatz API key. {error.message}".strip()

    elif isinstance(error, NetworkError):
        return f"Network error: {error.message}. Check your connection and try again."

    elif isinstance(error, ConfigurationError) and error.details.get("config_field") == "api_key":
        return "No API key configured. Run 'hatz-chat key set' or set HATZ_CHAT_API_KEY."

    return error.message
