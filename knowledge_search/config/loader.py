"""YAML configuration loader with environment variable overrides.

Configuration layers, later layers win:

  1. config/config.yaml  -- defaults checked into the repo
  2. .env file           -- local overrides (not committed)
  3. Environment vars    -- set at deploy time

The YAML file is grouped into sections (``embedding:``, ``chunking:`` ...).
Sections are flattened to ``<section>_<key>`` field names before being
handed to :class:`Settings`, e.g. ``chunking.max_words`` becomes
``chunk_max_words`` through :data:`_SECTION_PREFIXES`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from knowledge_search.config.settings import Settings
from knowledge_search.utils.errors import ConfigurationError

# YAML section name -> settings field prefix.
_SECTION_PREFIXES: dict[str, str] = {
    "embedding": "embedding_",
    "worker": "worker_",
    "chunking": "chunk_",
    "extraction": "",
    "chromadb": "chromadb_",
    "search": "search_default_",
    "app": "",
}


def load_config(path: str = "config/config.yaml") -> dict[str, Any]:
    """Read the YAML file and return its raw contents (empty when missing)."""
    config_path = Path(path)
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Build :class:`Settings` from YAML defaults plus the environment.

    YAML values are only used for fields that neither an environment
    variable nor the .env file sets, so both always win.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    yaml_values = _flatten(load_config(path))
    try:
        from_env = Settings().model_fields_set
        overrides = {
            field: value
            for field, value in yaml_values.items()
            if field in Settings.model_fields and field not in from_env
        }
        return Settings(**overrides)
    except PydanticValidationError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc


def _flatten(raw: dict[str, Any]) -> dict[str, Any]:
    """Flatten ``{section: {key: value}}`` into settings field names."""
    flat: dict[str, Any] = {}
    for section, body in raw.items():
        if not isinstance(body, dict):
            flat[section] = body
            continue
        prefix = _SECTION_PREFIXES.get(section, f"{section}_")
        for key, value in body.items():
            flat[f"{prefix}{key}"] = value
    return flat
