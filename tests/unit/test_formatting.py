"""Tests for text formatting and logging setup."""

import logging

from rich.console import Console

from hatz_chat.cli.rendering import render_reply
from hatz_chat.utils.formatting import conversation_title, likely_needs_horizontal_scroll, truncate
from hatz_chat.utils.logging_setup import configure_logging


class TestHorizontalScroll:
    """Test the wide-content heuristic."""

    def test_short_text(self) -> None:
        assert not likely_needs_horizontal_scroll("x" * 100)

    def test_long_token(self) -> None:
        assert likely_needs_horizontal_scroll("hash: " + "a" * 80 + " and some more words" * 3)

    def test_url(self) -> None:
        text = "See the docs at https://example.test/page for details. " * 3
        assert likely_needs_horizontal_scroll(text)

    def test_large_json_block(self) -> None:
        text = "{ " + "key: value, " * 40 + "}"
        assert likely_needs_horizontal_scroll(text)

    def test_plain_prose(self) -> None:
        assert not likely_needs_horizontal_scroll("This is ordinary prose that wraps well. " * 10)


class TestTitles:
    """Test title and preview helpers."""

    def test_whitespace_is_collapsed(self) -> None:
        assert conversation_title("  hello\n\n world  ") == "hello world"

    def test_truncate(self) -> None:
        assert truncate(None) == ""
        assert truncate("short") == "short"
        assert truncate("x" * 100, limit=10) == "x" * 9 + "…"


class TestRenderReply:
    """Test reply rendering."""

    def test_empty_reply(self) -> None:
        console = Console(record=True, width=80)
        render_reply(console, "")
        assert "(empty response)" in console.export_text()

    def test_markdown_reply(self) -> None:
        console = Console(record=True, width=80)
        render_reply(console, "**bold** answer", title="Bot")
        output = console.export_text()
        assert "Bot:" in output
        assert "bold answer" in output


class TestConfigureLogging:
    """Test logging setup."""

    def test_level_and_noisy_loggers(self) -> None:
        configure_logging("info")
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_debug_overrides_level(self) -> None:
        configure_logging("ERROR", debug=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpcore").level == logging.DEBUG
        configure_logging()
