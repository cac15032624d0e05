"""Text formatting helpers used when displaying replies and lists."""

import re
from typing import Optional

# Replies shorter than this never need horizontal room.
MIN_WIDE_TEXT_LENGTH = 120
# A whitespace-free run at least this long will not wrap cleanly.
LONG_TOKEN_LENGTH = 60
# JSON-like blocks beyond this length are printed unwrapped.
LARGE_BLOCK_LENGTH = 300

_WHITESPACE = re.compile(r"\s+")


def likely_needs_horizontal_scroll(text: str) -> bool:
    """
    Guess whether text contains content that should not be soft-wrapped.

    Long unbroken tokens (hashes, base64, URLs, single-line code) and large
    JSON-like blobs read better unwrapped. This is a cheap heuristic with no
    measurement of the terminal.
    """
    if len(text) < MIN_WIDE_TEXT_LENGTH:
        return False

    longest = max((len(token) for token in _WHITESPACE.split(text)), default=0)
    if longest >= LONG_TOKEN_LENGTH:
        return True

    if "http://" in text or "https://" in text:
        return True

    if "{" in text and "}" in text and len(text) > LARGE_BLOCK_LENGTH:
        return True

    return False


def conversation_title(text: str, limit: int = 40) -> str:
    """Title for a conversation derived from its first user message."""
    collapsed = _WHITESPACE.sub(" ", text).strip()
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 1].rstrip() + "…"


def truncate(text: Optional[str], limit: int = 60) -> str:
    """Single-line preview of an optional description."""
    if not text:
        return ""
    return conversation_title(text, limit)
