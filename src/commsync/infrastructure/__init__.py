# src/commsync/infrastructure/__init__.py
"""Infrastructure layer - provider adapters, persistence, and configuration."""

from commsync.infrastructure.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
