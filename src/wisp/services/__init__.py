"""Service layer helpers (settings persistence)."""

from .settings import Settings, SettingsStore, SuggestionSettings

__all__ = ["Settings", "SettingsStore", "SuggestionSettings"]
