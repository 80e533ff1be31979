"""Configuration module -- exports Settings, loaders, and a module-level instance."""

from knowledge_search.config.loader import load_config, load_settings
from knowledge_search.config.settings import Settings

settings = Settings()

__all__ = ["Settings", "load_config", "load_settings", "settings"]
