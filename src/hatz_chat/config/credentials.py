"""
Persistent storage for the Hatz API key.

The key lives in ``credentials.json`` inside the user configuration
directory, readable by the owner only.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import commentjson

from .hierarchical import user_config_dir

logger = logging.getLogger(__name__)

CREDENTIALS_FILE_NAME = "credentials.json"


class ApiKeyStore:
    """Load, save and clear the stored API key."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or (user_config_dir() / CREDENTIALS_FILE_NAME)

    def load(self) -> Optional[str]:
        """Return the stored key, or None when nothing usable is stored."""
        if not self.path.is_file():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = commentjson.loads(f.read())
        except Exception as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None

        api_key = data.get("api_key") if isinstance(data, dict) else None
        return api_key or None

    def save(self, api_key: str) -> None:
        """Persist the key with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            commentjson.dump({"api_key": api_key}, f, indent=2)
        # O_CREAT does not tighten an existing file's mode.
        os.chmod(self.path, 0o600)
        logger.info(f"Stored API key in {self.path}")

    def clear(self) -> bool:
        """Remove the stored key. Returns True if a key was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Removed stored API key from {self.path}")
        return True

    @staticmethod
    def mask(api_key: Optional[str]) -> str:
        """Render a key for display without revealing it."""
        if not api_key:
            return "Not set"
        if len(api_key) <= 8:
            return "*" * len(api_key)
        return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"
