"""Configuration management for AgentGrid.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/agentgrid/)
- User-level config (~/.config/agentgrid/ or ~/.agentgrid/)
- An explicit file passed on the command line
- Environment variable overrides (highest priority)

Example usage:
    from agentgrid.config import load_config

    config = load_config("/path/to/config.yaml")
    print(config.server.port)
    print(config.scheduler.min_event_interval)
"""

from agentgrid.config.loader import (
    deep_merge,
    dict_to_config,
    get_config,
    load_config,
    reset_config,
)
from agentgrid.config.paths import (
    get_config_paths,
    get_default_data_dir,
    get_user_config_path,
)
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

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "deep_merge",
    "dict_to_config",
    # Schema types
    "AgentConfig",
    "HealthConfig",
    "LoggingConfig",
    "ProcessConfig",
    "RouterConfig",
    "SchedulerConfig",
    "ServerConfig",
    "StorageConfig",
    "WatcherConfig",
    # Paths
    "get_config_paths",
    "get_default_data_dir",
    "get_user_config_path",
]
