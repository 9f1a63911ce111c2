"""Configuration management.

Loads and merges configuration from multiple sources with proper precedence.
"""

import json
import os
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config_loader import deep_merge, load_json_file
from .config_schema import (
    BackendConfig,
    Config,
    LoggingConfig,
    RealtimeConfig,
    RetryConfig,
    ValidationConfig,
)
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

__all__ = [
    "BackendConfig",
    "Config",
    "ConfigError",
    "ConfigManager",
    "LoggingConfig",
    "RealtimeConfig",
    "RetryConfig",
    "ValidationConfig",
]

CONFIG_FILENAMES = ("prereg.json", "prereg.jsonc")

# Environment variable -> dotted config path
ENV_OVERRIDES = {
    "PREREG_SUPABASE_URL": ("backend", "url"),
    "PREREG_SUPABASE_ANON_KEY": ("backend", "anonKey"),
    "PREREG_LANGUAGE": ("language",),
}


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


def _env_overrides() -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for name, path in ENV_OVERRIDES.items():
        value = os.environ.get(name)
        if not value:
            continue
        node = result
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    if result.get("backend", {}).get("url"):
        result["backend"].setdefault("type", "rest")
    return result


_config_var: ContextVar['ConfigManager'] = ContextVar('_config_var')


class ConfigManager:
    """Configuration management.

    Instance-based with ContextVar for scoping; class methods delegate to the
    current instance.

    Sources, lowest precedence first:
    1. Global config (``<config dir>/prereg.json``)
    2. Project configs (``prereg.json`` from the filesystem root down to cwd)
    3. ``PREREG_CONFIG_CONTENT`` (inline JSON)
    4. ``PREREG_SUPABASE_URL`` / ``PREREG_SUPABASE_ANON_KEY`` / ``PREREG_LANGUAGE``
    """

    def __init__(self) -> None:
        self._cache: Optional[Config] = None
        self._sources: List[str] = []

    @classmethod
    def current(cls) -> 'ConfigManager':
        try:
            return _config_var.get()
        except LookupError:
            instance = cls()
            _config_var.set(instance)
            return instance

    @classmethod
    def provide(cls, instance: 'ConfigManager') -> Token['ConfigManager']:
        return _config_var.set(instance)

    @classmethod
    def restore(cls, token: Token['ConfigManager']) -> None:
        _config_var.reset(token)

    @classmethod
    def reset(cls) -> None:
        """Drop the cached configuration."""
        inst = cls.current()
        inst._cache = None
        inst._sources = []

    @classmethod
    async def load(cls, directory: str = ".") -> Config:
        return cls.current()._load(directory)

    @classmethod
    async def get(cls) -> Config:
        inst = cls.current()
        if inst._cache is None:
            return inst._load()
        return inst._cache

    @classmethod
    def sources(cls) -> List[str]:
        return cls.current()._sources.copy()

    def _load(self, directory: str = ".") -> Config:
        if self._cache is not None:
            return self._cache

        result: Dict[str, Any] = {}
        sources: List[str] = []

        # 1. Global config
        for filename in CONFIG_FILENAMES:
            filepath = os.path.join(GlobalPath.config(), filename)
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(filepath)
                log.info("loaded global config", {"path": filepath})

        # 2. Project configs, root first so the nearest file wins
        current = Path(directory).resolve()
        project_configs: List[Path] = []
        while True:
            for filename in CONFIG_FILENAMES:
                filepath = current / filename
                if filepath.exists():
                    project_configs.append(filepath)
            if current == current.parent:
                break
            current = current.parent

        for filepath in reversed(project_configs):
            data = load_json_file(filepath)
            if data:
                result = deep_merge(result, data)
                sources.append(str(filepath))
                log.info("loaded project config", {"path": str(filepath)})

        # 3. Inline config
        env_config = os.environ.get("PREREG_CONFIG_CONTENT")
        if env_config:
            try:
                data = json.loads(env_config)
            except json.JSONDecodeError:
                log.error("failed to parse PREREG_CONFIG_CONTENT")
            else:
                if isinstance(data, dict):
                    result = deep_merge(result, data)
                    sources.append("PREREG_CONFIG_CONTENT")

        # 4. Individual environment overrides
        overrides = _env_overrides()
        if overrides:
            result = deep_merge(result, overrides)
            sources.append("environment")

        try:
            config = Config.model_validate(result)
        except ValueError as e:
            raise ConfigError(sources[-1] if sources else "<defaults>", str(e)) from e

        self._sources = sources
        self._cache = config
        return config
