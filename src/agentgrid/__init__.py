"""AgentGrid: session lifecycle and event orchestration for terminal coding agents."""

__version__ = "0.1.0"

# Public API
from agentgrid.config import Config, get_config, load_config
from agentgrid.errors import (
    AgentGridError,
    ConflictError,
    NotFoundError,
    OfflineError,
    ProcessError,
    ValidationError,
)
from agentgrid.events import EventRouter, EventScheduler, StateChange, parse_hook_event
from agentgrid.hub import BroadcastHub, GridServer, create_app
from agentgrid.process import ProcessController, TmuxController
from agentgrid.service import GridService
from agentgrid.session import Session, SessionRegistry, SessionState
from agentgrid.watching import PermissionWatcher, detect_prompt

__all__ = [
    # Main entry points
    "GridService",
    "GridServer",
    "create_app",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "AgentGridError",
    "ConflictError",
    "NotFoundError",
    "OfflineError",
    "ProcessError",
    "ValidationError",
    # Components
    "BroadcastHub",
    "EventRouter",
    "EventScheduler",
    "PermissionWatcher",
    "ProcessController",
    "SessionRegistry",
    "TmuxController",
    # Types
    "Session",
    "SessionState",
    "StateChange",
    "detect_prompt",
    "parse_hook_event",
]
