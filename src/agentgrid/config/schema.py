"""Configuration schema dataclasses for AgentGrid.

Defines the structure of configuration at all levels (system, user, explicit file).
Every field has a default so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


def _default_search_paths() -> list[str]:
    return [
        str(Path.home() / ".local" / "bin" / "claude"),
        "/usr/local/bin/claude",
        "/usr/bin/claude",
    ]


@dataclass
class ServerConfig:
    """HTTP/WebSocket listener configuration."""

    host: str = "127.0.0.1"
    port: int = 3333


@dataclass
class ProcessConfig:
    """tmux invocation configuration.

    Example config.yaml:
        process:
          tmux_bin: /usr/bin/tmux
          timeout: 10.0
          name_prefix: agentgrid
    """

    tmux_bin: str = "tmux"
    timeout: float = 10.0  # Per tmux invocation
    settle_delay: float = 0.3  # Wait after spawning the shell before injecting
    confirm_delay: float = 0.1  # Wait between paste and Enter
    name_prefix: str = "agentgrid"
    width: int = 200
    height: int = 50
    shell: str = "bash --norc --noprofile"


@dataclass
class AgentConfig:
    """The coding agent started inside each managed process."""

    command: str = "claude"  # Fallback when no search path exists
    args: list[str] = field(default_factory=lambda: ["--dangerously-skip-permissions"])
    continue_flag: str = "--continue"
    search_paths: list[str] = field(default_factory=_default_search_paths)


@dataclass
class WatcherConfig:
    """Permission prompt polling configuration."""

    enabled: bool = True
    poll_interval: float = 1.0
    capture_lines: int = 30
    signature_lines: int = 10
    option_lines: int = 15


@dataclass
class HealthConfig:
    """Process liveness reconciliation."""

    interval: float = 5.0


@dataclass
class RouterConfig:
    """Deadlines applied by the event router."""

    revert_delay: float = 1.5  # yes -> idle/working
    removal_grace: float = 2.0  # offline -> removed


@dataclass
class SchedulerConfig:
    """Event scheduler timing (seconds)."""

    min_event_interval: float = 0.08
    state_coalesce_window: float = 0.1
    pulse_coalesce_window: float = 0.15
    max_queue_age: float = 2.0
    processing_interval: float = 0.016  # ~60Hz


@dataclass
class StorageConfig:
    """Where managed sessions are persisted."""

    data_dir: str | None = None  # Default: ~/.agentgrid/data


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
