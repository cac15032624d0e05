"""
Core components for Hatz Chat.

This package holds the API client, the App runner and the session object
that ties them together.
"""

__all__ = ["client", "apps", "session"]
