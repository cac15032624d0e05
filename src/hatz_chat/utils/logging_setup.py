"""Logging configuration for Hatz Chat."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(name)s: %(message)s"

# Libraries that are chatty at DEBUG and would drown out our own records.
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "WARNING", debug: bool = False, console: Optional[Console] = None) -> None:
    """
    Configure root logging to stderr through rich.

    Log records go to stderr so they never interleave with streamed replies
    on stdout.

    Args:
        level: Log level name
        debug: Force DEBUG level and show tracebacks with locals
        console: Console to log to (defaults to a stderr console)
    """
    effective_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.WARNING)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=debug,
        rich_tracebacks=True,
        tracebacks_show_locals=debug,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(effective_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)
