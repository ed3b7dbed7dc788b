"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Deep merge of the system -> user -> explicit cascade
- Environment variable overrides
- Conversion from dict to typed Config dataclasses
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from agentgrid.config.paths import get_config_paths
from agentgrid.config.schema import (
    AgentConfig,
    Config,
    HealthConfig,
    LoggingConfig,
    ProcessConfig,
    RouterConfig,
    SchedulerConfig,
    ServerConfig,
    StorageConfig,
    WatcherConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("agentgrid.config")

_cached_config: Config | None = None

_SECTIONS: dict[str, type] = {
    "server": ServerConfig,
    "process": ProcessConfig,
    "agent": AgentConfig,
    "watcher": WatcherConfig,
    "health": HealthConfig,
    "router": RouterConfig,
    "scheduler": SchedulerConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base.

    Nested dicts merge recursively, lists and scalars are replaced, and None in
    override leaves the base value untouched.
    """
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result


def env_overrides() -> dict[str, Any]:
    """Build config dict from AGENTGRID_* environment variables."""
    overrides: dict[str, Any] = {}

    def put(section: str, key: str, value: Any) -> None:
        overrides.setdefault(section, {})[key] = value

    if host := os.environ.get("AGENTGRID_HOST"):
        put("server", "host", host)
    if port := os.environ.get("AGENTGRID_PORT"):
        try:
            put("server", "port", int(port))
        except ValueError:
            _log.warning("Ignoring non-numeric AGENTGRID_PORT=%r", port)
    if data_dir := os.environ.get("AGENTGRID_DATA_DIR"):
        put("storage", "data_dir", data_dir)
    if log_path := os.environ.get("AGENTGRID_LOG"):
        put("logging", "file", log_path)
    if tmux_bin := os.environ.get("AGENTGRID_TMUX"):
        put("process", "tmux_bin", tmux_bin)

    return overrides


def _build_section(cls: type, data: Any) -> Any:
    """Instantiate one section dataclass, ignoring unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        _log.warning("Unknown config keys in %s: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**{k: v for k, v in data.items() if k in known})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    return Config(**{name: _build_section(cls, data.get(name)) for name, cls in _SECTIONS.items()})


def load_config(path: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge configuration from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config file (``path``)
    3. User config
    4. System config

    Args:
        path: Optional explicit config file.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and path is None:
        return _cached_config

    merged: dict[str, Any] = {}
    for config_path in get_config_paths(path):
        config_data = load_yaml_file(config_path)
        if config_data:
            _log.debug("Loaded config from %s", config_path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())

    config = dict_to_config(merged)
    _cached_config = config
    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None
