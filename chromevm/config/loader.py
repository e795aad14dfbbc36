"""
Loader for orchestrator.yml.

The file is optional: every key has a default in
:class:`~chromevm.config.models.OrchestratorSettings`, and values present in
the file are deep-merged over those defaults. Parsed results are cached for
``_cache_duration`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any

import yaml

from chromevm.config.models import OrchestratorSettings
from chromevm.config.settings import get_env

logger = logging.getLogger("vm-orchestrator")

CONFIG_PATH = Path(get_env("config_path", "/data/config") or "/data/config")
ORCHESTRATOR_CONFIG_FILE = CONFIG_PATH / "orchestrator.yml"


def deep_merge(base: dict, override: dict) -> dict:
    """Return *base* with *override* merged in; nested dicts merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class OrchestratorConfig:
    """Process-wide view of orchestrator.yml."""

    _lock = threading.Lock()
    _config: dict = {}
    _typed_config: OrchestratorSettings | None = None
    _last_load: float = 0
    _cache_duration: int = 60
    config_file: Path = ORCHESTRATOR_CONFIG_FILE

    @classmethod
    def _fresh(cls) -> bool:
        return bool(cls._config) and time.time() - cls._last_load < cls._cache_duration

    @classmethod
    def load(cls) -> dict:
        """Raw merged configuration, re-read once the cache expires."""
        if cls._fresh():
            return cls._config

        with cls._lock:
            if not cls._fresh():
                merged = deep_merge(OrchestratorSettings().model_dump(), cls._read_file())
                cls._typed_config = OrchestratorSettings.model_validate(merged)
                cls._config = merged
                cls._last_load = time.time()
            return cls._config

    @classmethod
    def _read_file(cls) -> dict[str, Any]:
        path = cls.config_file
        if not path.exists():
            logger.info(f"Orchestrator config not found, using defaults: {path}")
            return {}
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading orchestrator config {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Ignoring orchestrator config {path}: top level is not a mapping")
            return {}
        logger.info(f"Loaded orchestrator config from {path}")
        return data

    @classmethod
    def get(cls, *keys: str, default: object = None) -> object:
        """Nested lookup, e.g. ``get("edge_worker", "base_url")``."""
        node: object = cls.load()
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    @classmethod
    def settings(cls) -> OrchestratorSettings:
        """Typed configuration."""
        if cls._typed_config is None or not cls._fresh():
            cls.load()
        assert cls._typed_config is not None
        return cls._typed_config

    @classmethod
    def reload(cls) -> None:
        """Drop the cache and read the file again."""
        with cls._lock:
            cls._config = {}
            cls._last_load = 0
        cls.load()
