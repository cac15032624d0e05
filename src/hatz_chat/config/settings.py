"""
Configuration settings for Hatz Chat.

This module provides configuration management using Pydantic settings
with support for environment variables, .env files and the layered JSON
settings files handled by the hierarchical loader.
"""

from typing import Optional, Dict, Any
from pathlib import Path
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .env_loader import EnvFileLoader
from .hierarchical import HierarchicalConfigLoader, user_config_dir

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ai.hatz.ai/v1"


class HatzChatSettings(BaseSettings):
    """
    Main configuration settings for Hatz Chat.

    Settings are loaded from multiple sources in order of preference:
    1. Environment variables (prefixed with HATZ_CHAT_)
    2. Settings files and .env files
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="HATZ_CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_key: Optional[str] = Field(
        default=None,
        description="Hatz API key"
    )

    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="Base URL of the Hatz API"
    )

    # Chat Configuration
    default_model: Optional[str] = Field(
        default=None,
        description="Model selected for new conversations when available"
    )

    stream: bool = Field(
        default=True,
        description="Stream chat responses"
    )

    timeout: float = Field(
        default=60.0,
        description="Request timeout in seconds",
        gt=0
    )

    # Directory Configuration
    config_dir: Path = Field(
        default_factory=user_config_dir,
        description="Configuration directory path"
    )

    # Logging Configuration
    log_level: str = Field(
        default="WARNING",
        description="Logging level"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level '{v}'. Valid levels: {', '.join(sorted(valid_levels))}")
        return v_upper

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL without a trailing slash."""
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"Invalid base URL '{v}'. It must start with https:// or http://")
        return v.rstrip("/")

    def ensure_directories(self) -> None:
        """Ensure the configuration directory exists."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @property
    def credentials_path(self) -> Path:
        """Path to the stored API key."""
        return self.config_dir / "credentials.json"

    @property
    def is_configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary, excluding sensitive data."""
        data = self.model_dump()
        # Mask sensitive data
        if data.get("api_key"):
            data["api_key"] = "***masked***"
        data["config_dir"] = str(data["config_dir"])
        return data


def load_settings(
    working_directory: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HatzChatSettings:
    """
    Load effective settings from .env files, settings files and the environment.

    Args:
        working_directory: Directory to start .env and project settings discovery from
        overrides: Values taking precedence over every other source

    Returns:
        Combined settings
    """
    EnvFileLoader(working_directory).load_env_file()

    loader = HierarchicalConfigLoader(working_directory)
    merged = loader.load_all_settings()
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    known = set(HatzChatSettings.model_fields)
    unknown = sorted(key for key in merged if key not in known)
    if unknown:
        logger.debug(f"Ignoring unknown settings: {', '.join(unknown)}")

    return HatzChatSettings(**{key: value for key, value in merged.items() if key in known})
