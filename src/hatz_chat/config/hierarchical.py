"""
Layered settings files for Hatz Chat.

Four layers are merged, later ones winning:

1. built-in defaults
2. user file: ``$XDG_CONFIG_HOME/hatz-chat/settings.json``
3. project file: ``.hatz-chat/settings.json`` in the working directory or
   the nearest parent up to the repository root
4. ``HATZ_CHAT_*`` environment variables

Settings files are JSON and may contain comments. String values may refer
to environment variables as ``$NAME`` or ``${NAME}``.
"""

import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging
from enum import Enum
from dataclasses import dataclass, field

import commentjson

logger = logging.getLogger(__name__)

APP_DIR_NAME = "hatz-chat"
ENV_PREFIX = "HATZ_CHAT_"

_ENV_REFERENCE = re.compile(r"\$(?:(\w+)|\{([^}]+)\})")

_TRUE_STRINGS = ("true", "1", "yes", "on")


def user_config_dir() -> Path:
    """User configuration directory, honouring XDG_CONFIG_HOME."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_STRINGS


# Built-in values for the file-backed settings.
DEFAULT_SETTINGS: Dict[str, Any] = {
    "base_url": "https://ai.hatz.ai/v1",
    "stream": True,
    "timeout": 60.0,
    "log_level": "WARNING",
    "debug": False,
}

# Setting name to converter for values read from HATZ_CHAT_* variables.
ENV_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    "api_key": str,
    "base_url": str,
    "default_model": str,
    "stream": parse_bool,
    "timeout": float,
    "log_level": str,
    "debug": parse_bool,
}


class SettingScope(Enum):
    """Where a setting came from."""
    DEFAULT = "default"
    USER = "user"
    PROJECT = "project"
    ENVIRONMENT = "environment"


WRITABLE_SCOPES = (SettingScope.USER, SettingScope.PROJECT)


@dataclass
class SettingsFile:
    """One layer: its location, its values and any problem reading it."""
    path: Path
    settings: Dict[str, Any]
    scope: SettingScope
    exists: bool = True
    errors: List[str] = field(default_factory=list)


class HierarchicalConfigLoader:
    """Reads, merges and writes the settings layers."""

    CONFIG_DIR_NAME = ".hatz-chat"
    SETTINGS_FILE_NAME = "settings.json"

    PRECEDENCE = (
        SettingScope.DEFAULT,
        SettingScope.USER,
        SettingScope.PROJECT,
        SettingScope.ENVIRONMENT,
    )

    def __init__(self, working_directory: Optional[Path] = None):
        self.working_directory = Path(working_directory or Path.cwd()).resolve()
        self._layers: Dict[SettingScope, SettingsFile] = {}

    def load_all_settings(self) -> Dict[str, Any]:
        """Read every layer and return the merged values."""
        self._layers = {
            SettingScope.DEFAULT: SettingsFile(
                path=Path("(default)"),
                settings=dict(DEFAULT_SETTINGS),
                scope=SettingScope.DEFAULT,
            ),
            SettingScope.USER: self._read_file(self._settings_path(SettingScope.USER), SettingScope.USER),
            SettingScope.PROJECT: self._read_file(self._settings_path(SettingScope.PROJECT), SettingScope.PROJECT),
            SettingScope.ENVIRONMENT: self._read_environment(),
        }

        merged: Dict[str, Any] = {}
        for scope in self.PRECEDENCE:
            merged.update(self._layers[scope].settings)
        return merged

    def get_settings_file(self, scope: SettingScope) -> Optional[SettingsFile]:
        return self._layers.get(scope)

    def get_setting_sources(self, key: str) -> Dict[str, Any]:
        """Report which layers define a key, and with what value."""
        return {
            scope.value: {"value": layer.settings[key], "path": str(layer.path)}
            for scope, layer in self._layers.items()
            if key in layer.settings
        }

    @property
    def errors(self) -> List[str]:
        """Problems met while reading the settings files."""
        return [error for layer in self._layers.values() for error in layer.errors]

    def save_settings(self, scope: SettingScope, settings: Dict[str, Any]) -> bool:
        """
        Replace the contents of a user or project settings file.

        Args:
            scope: USER or PROJECT
            settings: Complete settings for that file

        Returns:
            True if the file was written

        Raises:
            ValueError: For the read-only DEFAULT and ENVIRONMENT layers
        """
        if scope not in WRITABLE_SCOPES:
            raise ValueError(f"Cannot save to {scope.value.upper()} scope")

        layer = self._layers.get(scope)
        if layer is None:
            layer = SettingsFile(path=self._settings_path(scope), settings={}, scope=scope, exists=False)
            self._layers[scope] = layer

        try:
            layer.path.parent.mkdir(parents=True, exist_ok=True)
            with open(layer.path, "w", encoding="utf-8") as f:
                commentjson.dump(settings, f, indent=2, ensure_ascii=False)
        except OSError as e:
            message = f"Failed to save {scope.value} settings to {layer.path}: {e}"
            logger.error(message)
            layer.errors.append(message)
            return False

        layer.settings = dict(settings)
        layer.exists = True
        logger.info(f"Saved {scope.value} settings to {layer.path}")
        return True

    def update_setting(self, scope: SettingScope, key: str, value: Any) -> bool:
        """Set a single key in a user or project file, keeping its other keys."""
        layer = self._layers.get(scope)
        if layer is None:
            layer = self._read_file(self._settings_path(scope), scope)
            self._layers[scope] = layer
        return self.save_settings(scope, {**layer.settings, key: value})

    def _read_file(self, path: Path, scope: SettingScope) -> SettingsFile:
        layer = SettingsFile(path=path, settings={}, scope=scope, exists=path.is_file())
        if not layer.exists:
            logger.debug(f"No {scope.value} settings at {path}")
            return layer

        try:
            with open(path, "r", encoding="utf-8") as f:
                parsed = commentjson.loads(f.read())
            if not isinstance(parsed, dict):
                raise ValueError("top-level value must be an object")
        except Exception as e:
            message = f"Invalid settings file {path}: {e}"
            logger.error(message)
            layer.errors.append(message)
            return layer

        layer.settings = {key: self._expand(value) for key, value in parsed.items()}
        logger.debug(f"Loaded {len(layer.settings)} {scope.value} settings from {path}")
        return layer

    def _read_environment(self) -> SettingsFile:
        values: Dict[str, Any] = {}
        for name, convert in ENV_CONVERTERS.items():
            env_name = f"{ENV_PREFIX}{name.upper()}"
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                values[name] = convert(raw)
            except ValueError as e:
                logger.warning(f"Ignoring {env_name}={raw!r}: {e}")

        return SettingsFile(
            path=Path("(environment)"),
            settings=values,
            scope=SettingScope.ENVIRONMENT,
            exists=bool(values),
        )

    def _expand(self, value: Any) -> Any:
        """Substitute $NAME / ${NAME} references in strings, recursively."""
        if isinstance(value, dict):
            return {key: self._expand(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._expand(item) for item in value]
        if not isinstance(value, str):
            return value

        def substitute(match: "re.Match[str]") -> str:
            name = match.group(1) or match.group(2)
            if name in os.environ:
                return os.environ[name]
            logger.warning(f"Environment variable not found: {name}")
            return match.group(0)

        return _ENV_REFERENCE.sub(substitute, value)

    def _project_dir(self) -> Optional[Path]:
        """Nearest .hatz-chat directory at or above the working directory."""
        directory = self.working_directory
        while directory != directory.parent:
            candidate = directory / self.CONFIG_DIR_NAME
            if candidate.is_dir():
                return candidate
            if (directory / ".git").exists():
                return None
            directory = directory.parent
        return None

    def _settings_path(self, scope: SettingScope) -> Path:
        if scope is SettingScope.USER:
            return user_config_dir() / self.SETTINGS_FILE_NAME
        if scope is SettingScope.PROJECT:
            project_dir = self._project_dir() or (self.working_directory / self.CONFIG_DIR_NAME)
            return project_dir / self.SETTINGS_FILE_NAME
        raise ValueError(f"No settings file for {scope.value} scope")
