"""Hook event classification, routing and scheduling."""

from agentgrid.events.changes import ChangeKind, Priority, StateChange
from agentgrid.events.hooks import (
    HookEvent,
    IdleNotification,
    Notification,
    PermissionRequested,
    PromptSubmitted,
    SessionStarted,
    Stopped,
    Terminated,
    ToolCompleted,
    ToolInvoked,
    Unclassified,
    parse_hook_event,
)
from agentgrid.events.router import EventRouter
from agentgrid.events.scheduler import EventScheduler, SessionQueue

__all__ = [
    # Changes
    "ChangeKind",
    "Priority",
    "StateChange",
    # Hook events
    "HookEvent",
    "IdleNotification",
    "Notification",
    "PermissionRequested",
    "PromptSubmitted",
    "SessionStarted",
    "Stopped",
    "Terminated",
    "ToolCompleted",
    "ToolInvoked",
    "Unclassified",
    "parse_hook_event",
    # Components
    "EventRouter",
    "EventScheduler",
    "SessionQueue",
]
