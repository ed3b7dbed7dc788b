"""Configuration and data path resolution.

Config files are looked up at:
- System: /etc/agentgrid/config.yaml
- User: $XDG_CONFIG_HOME/agentgrid/, ~/.config/agentgrid/ or ~/.agentgrid/
- Explicit: the file passed with --config
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "agentgrid"
SHORT_NAME = ".agentgrid"
FALLBACK_DATA_DIR = Path("/tmp") / "agentgrid-data"


def get_system_config_path() -> Path:
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path:
    """Get user-level config path. The file may not exist."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME

    home = Path.home()
    xdg_default = home / ".config"
    if xdg_default.exists():
        return xdg_default / APP_NAME / CONFIG_FILENAME

    return home / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(explicit: str | Path | None = None) -> list[Path]:
    """Config files in load order (later overrides earlier)."""
    paths = [get_system_config_path(), get_user_config_path()]
    if explicit is not None:
        paths.append(Path(explicit).expanduser())
    return paths


def get_default_data_dir() -> Path:
    """Directory holding sessions.yaml when storage.data_dir is unset."""
    return Path.home() / SHORT_NAME / "data"
