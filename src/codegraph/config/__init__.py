"""Configuration module."""

from codegraph.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
