"""Service layer: configuration and persistence helpers."""

from .settings import Settings, SettingsStore, ToolEndpoint

__all__ = ["Settings", "SettingsStore", "ToolEndpoint"]
