"""
Configuration package for Hatz Chat.

This package contains settings, layered settings files, .env discovery and
the persistent API key store.
"""

__all__ = ["settings", "hierarchical", "env_loader", "credentials"]
