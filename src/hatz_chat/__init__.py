"""
Hatz Chat - a terminal client for the Hatz AI API.

This package provides chat completions, file uploads and App (prompt
template) execution against the Hatz REST API from the command line.
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from typing import Final

# Package metadata
VERSION: Final[str] = __version__
PACKAGE_NAME: Final[str] = "hatz-chat"
USER_AGENT: Final[str] = f"{PACKAGE_NAME}/{VERSION}"

__all__ = [
    "__version__",
    "VERSION",
    "PACKAGE_NAME",
    "USER_AGENT",
]
