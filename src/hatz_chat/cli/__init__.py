"""Command-line interface for Hatz Chat."""

__all__ = ["app"]
