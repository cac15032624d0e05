"""
Utilities package for Hatz Chat.

This package contains logging setup and text formatting helpers shared by
the CLI.
"""

__all__ = ["logging_setup", "formatting"]
