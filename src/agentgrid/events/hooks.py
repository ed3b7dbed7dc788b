"""Hook event variants.

Agent hooks POST arbitrary JSON. ``parse_hook_event`` turns it into one of a
closed set of frozen dataclasses at the ingress boundary; anything it cannot
classify becomes ``Unclassified``, which is broadcast but never touches the
registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class HookEvent:
    """Fields common to every classified hook event."""

    session_id: str  # External (agent-reported) session id
    cwd: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def name(self) -> str:
        return str(self.raw.get("hook_event_name", type(self).__name__))


@dataclass(frozen=True)
class SessionStarted(HookEvent):
    pass


@dataclass(frozen=True)
class PromptSubmitted(HookEvent):
    pass


@dataclass(frozen=True)
class ToolInvoked(HookEvent):
    tool_use_id: str | None = None
    tool_name: str | None = None


@dataclass(frozen=True)
class ToolCompleted(HookEvent):
    tool_use_id: str | None = None
    tool_name: str | None = None
    blocked: bool = False


@dataclass(frozen=True)
class Stopped(HookEvent):
    subagent: bool = False


@dataclass(frozen=True)
class Terminated(HookEvent):
    pass


@dataclass(frozen=True)
class IdleNotification(HookEvent):
    pass


@dataclass(frozen=True)
class Notification(HookEvent):
    notification_id: str | None = None
    notification_type: str | None = None


@dataclass(frozen=True)
class PermissionRequested(HookEvent):
    tool_use_id: str | None = None
    tool_name: str | None = None


@dataclass(frozen=True)
class Unclassified:
    """A payload that could not be mapped to a known event."""

    raw: Any
    reason: str
    session_id: str | None = None


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_hook_event(payload: Any) -> HookEvent | Unclassified:
    """Classify a raw hook payload.

    Requires a string ``session_id`` and ``hook_event_name``; everything else
    is optional and tolerated in any shape.
    """
    if not isinstance(payload, dict):
        return Unclassified(raw=payload, reason="payload is not an object")

    session_id = payload.get("session_id")
    hook_name = payload.get("hook_event_name")
    if not isinstance(session_id, str) or not session_id:
        return Unclassified(raw=payload, reason="missing session_id")
    if not isinstance(hook_name, str) or not hook_name:
        return Unclassified(raw=payload, reason="missing hook_event_name", session_id=session_id)

    cwd = payload.get("cwd") if isinstance(payload.get("cwd"), str) else None
    common = {"session_id": session_id, "cwd": cwd or None, "raw": payload}
    tool_use_id = _opt_str(payload.get("tool_use_id"))
    tool_name = _opt_str(payload.get("tool_name"))

    if hook_name == "SessionStart":
        return SessionStarted(**common)
    if hook_name == "UserPromptSubmit":
        return PromptSubmitted(**common)
    if hook_name == "PreToolUse":
        return ToolInvoked(**common, tool_use_id=tool_use_id, tool_name=tool_name)
    if hook_name == "PostToolUse":
        return ToolCompleted(
            **common,
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            blocked=bool(payload.get("tool_use_blocked")),
        )
    if hook_name in ("Stop", "SubagentStop"):
        return Stopped(**common, subagent=hook_name == "SubagentStop")
    if hook_name == "SessionEnd":
        return Terminated(**common)
    if hook_name == "Notification":
        notification_type = _opt_str(payload.get("notification_type") or payload.get("type"))
        if notification_type == "idle_prompt":
            return IdleNotification(**common)
        return Notification(
            **common,
            notification_id=_opt_str(payload.get("notification_id")),
            notification_type=notification_type,
        )
    if hook_name == "PermissionRequest":
        return PermissionRequested(**common, tool_use_id=tool_use_id, tool_name=tool_name)

    return Unclassified(raw=payload, reason=f"unknown hook {hook_name!r}", session_id=session_id)
