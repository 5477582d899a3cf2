"""Configuration package."""

from src.config.settings import KNOWN_SOURCES, Settings, get_settings

__all__ = ["KNOWN_SOURCES", "Settings", "get_settings"]
