"""
.env file loading for Hatz Chat.

The first .env file found walking up from the working directory is loaded
into the process environment without overriding variables that are
already set.
"""

from pathlib import Path
from typing import Dict, Iterator, List, Optional
import logging

from dotenv import dotenv_values, load_dotenv

logger = logging.getLogger(__name__)

EXAMPLE_ENV = """\
# Hatz Chat environment
# Values set in the real environment take precedence over this file.

# API key (or store one with 'hatz-chat key set')
HATZ_CHAT_API_KEY=your-api-key-here

# Model preselected for new conversations, when the key has access to it
# HATZ_CHAT_DEFAULT_MODEL=

# Stream replies token by token
HATZ_CHAT_STREAM=true

# Request timeout in seconds
HATZ_CHAT_TIMEOUT=60

# DEBUG, INFO, WARNING or ERROR
HATZ_CHAT_LOG_LEVEL=WARNING
HATZ_CHAT_DEBUG=false
"""


class EnvFileLoader:
    """
    Finds and loads a single .env file.

    Candidates, first match wins:
    1. ``.hatz-chat/.env`` then ``.env`` in the working directory and each
       parent, stopping after a git repository root or the home directory
    2. ``~/.hatz-chat/.env`` then ``~/.env``
    """

    CONFIG_DIR_NAME = ".hatz-chat"
    ENV_FILE_NAME = ".env"

    def __init__(self, working_directory: Optional[Path] = None):
        self.working_directory = Path(working_directory or Path.cwd()).resolve()
        self._loaded_file: Optional[Path] = None
        self._loaded_vars: Dict[str, str] = {}

    def load_env_file(self) -> Optional[Path]:
        """Load the first candidate file that exists. Returns its path, if any."""
        path = next((candidate for candidate in self.get_search_paths() if candidate.is_file()), None)
        if path is None:
            logger.debug(f"No {self.ENV_FILE_NAME} file found from {self.working_directory}")
            return None

        load_dotenv(path, override=False)
        self._loaded_file = path
        self._loaded_vars = {key: value for key, value in dotenv_values(path).items() if value is not None}
        logger.info(f"Loaded {len(self._loaded_vars)} variables from {path}")
        return path

    def get_loaded_file(self) -> Optional[Path]:
        return self._loaded_file

    def get_loaded_vars(self) -> Dict[str, str]:
        return dict(self._loaded_vars)

    def get_search_paths(self) -> List[Path]:
        """Every candidate path, in the order they are tried."""
        paths: List[Path] = []
        for directory in self._search_directories():
            paths.append(directory / self.CONFIG_DIR_NAME / self.ENV_FILE_NAME)
            paths.append(directory / self.ENV_FILE_NAME)
        return paths

    def create_example_env_file(self, target_dir: Optional[Path] = None) -> Path:
        """Write a commented example .env (default: ``.hatz-chat/`` in the working directory)."""
        target_dir = target_dir or (self.working_directory / self.CONFIG_DIR_NAME)
        target_dir.mkdir(parents=True, exist_ok=True)

        path = target_dir / self.ENV_FILE_NAME
        path.write_text(EXAMPLE_ENV, encoding="utf-8")
        logger.info(f"Created example {self.ENV_FILE_NAME} file: {path}")
        return path

    def _search_directories(self) -> Iterator[Path]:
        home = Path.home().resolve()
        directory = self.working_directory
        while directory != directory.parent:
            yield directory
            if directory == home:
                return
            if (directory / ".git").exists():
                break
            directory = directory.parent
        yield home
