"""
Streaming response decoder for Hatz chat completions.

The completions endpoint streams newline-delimited lines, each optionally
prefixed with ``data:``. A line is either a small JSON object
``{"type": ..., "message": ...}`` or raw text, and the literal ``[DONE]``
ends the stream.

Raw bytes are buffered and only decoded once a whole line is present, so a
multi-byte UTF-8 sequence split across network chunks is never decoded in
halves.
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterable, Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from .models import StreamingChunk

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

TokenCallback = Callable[[str], Union[None, Awaitable[None]]]


class StreamState(Enum):
    """States of the line decoder."""
    ACCUMULATING = "accumulating"
    LINE_READY = "line_ready"
    DECODED = "decoded"
    DONE = "done"


def clean_line(line: str) -> str:
    """Strip a trailing CR and an optional ``data:`` prefix from a line.

    Only the five prefix characters are removed; whitespace after them is
    part of the token.
    """
    if line.endswith("\r"):
        line = line[:-1]
    if line.startswith(DATA_PREFIX):
        line = line[len(DATA_PREFIX):]
    return line


def parse_token(cleaned: str) -> str:
    """Extract the token text from a cleaned line.

    Lines that are not a ``{"type", "message"}`` object are passed through
    verbatim; the service has been seen emitting plain text lines.
    """
    try:
        return StreamingChunk.model_validate_json(cleaned).message
    except ValidationError:
        return cleaned


class StreamDecoder:
    """Incremental decoder turning byte chunks into token strings."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.state = StreamState.ACCUMULATING
        self.lines_seen = 0

    @property
    def is_done(self) -> bool:
        return self.state is StreamState.DONE

    def feed(self, chunk: bytes) -> List[str]:
        """Buffer a chunk and return the tokens of every completed line."""
        if self.is_done:
            return []

        self._buffer.extend(chunk)
        tokens: List[str] = []

        while True:
            newline_index = self._buffer.find(b"\n")
            if newline_index < 0:
                break

            self.state = StreamState.LINE_READY
            raw_line = bytes(self._buffer[:newline_index])
            del self._buffer[:newline_index + 1]

            token = self._process_line(raw_line)
            if self.is_done:
                self._buffer.clear()
                return tokens
            if token is not None:
                tokens.append(token)

        self.state = StreamState.ACCUMULATING
        return tokens

    def finish(self) -> List[str]:
        """Flush a trailing unterminated line at end of stream."""
        if self.is_done:
            return []

        tokens: List[str] = []
        if self._buffer:
            raw_line = bytes(self._buffer)
            self._buffer.clear()
            token = self._process_line(raw_line)
            if token is not None:
                tokens.append(token)

        self.state = StreamState.DONE
        return tokens

    def _process_line(self, raw_line: bytes) -> Optional[str]:
        self.lines_seen += 1
        cleaned = clean_line(raw_line.decode("utf-8", errors="replace"))

        if not cleaned:
            return None

        if cleaned.strip() == DONE_SENTINEL:
            logger.debug(f"Stream finished after {self.lines_seen} lines")
            self.state = StreamState.DONE
            return None

        self.state = StreamState.DECODED
        return parse_token(cleaned)


async def emit_token(on_token: Optional[TokenCallback], token: str) -> None:
    """Invoke a sync or async token callback."""
    if on_token is None:
        return
    if asyncio.iscoroutinefunction(on_token):
        await on_token(token)
    else:
        on_token(token)


async def decode_stream(
    chunks: AsyncIterable[bytes],
    on_token: Optional[TokenCallback],
    cancel_event: Optional[asyncio.Event] = None,
) -> StreamDecoder:
    """
    Drive a StreamDecoder over an async byte stream.

    Cancellation is checked between chunk reads and between callbacks; a
    cancelled stream returns quietly.

    Args:
        chunks: Async iterable of raw byte chunks
        on_token: Callback invoked once per decoded token
        cancel_event: Optional event that stops reading when set

    Returns:
        The decoder, for inspection of its final state
    """
    decoder = StreamDecoder()

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async for chunk in chunks:
        if cancelled():
            logger.info("Streaming cancelled by caller")
            return decoder

        for token in decoder.feed(chunk):
            await emit_token(on_token, token)
            if cancelled():
                logger.info("Streaming cancelled by caller")
                return decoder

        if decoder.is_done:
            return decoder

    if cancelled():
        return decoder

    for token in decoder.finish():
        await emit_token(on_token, token)

    return decoder
