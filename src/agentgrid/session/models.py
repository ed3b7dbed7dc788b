"""Session data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionState(Enum):
    """Lifecycle state of a session.

    ``yes`` and ``no`` are transient tool outcomes; ``offline`` means the
    underlying process is gone and no text may be injected.
    """

    IDLE = "idle"
    WORKING = "working"
    YES = "yes"
    NO = "no"
    WAITING = "waiting"
    OFFLINE = "offline"


class SessionKind(Enum):
    MANAGED = "managed"  # This process created and controls it
    OBSERVED = "observed"  # Known only through hook events


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One managed or observed agent session.

    Attributes:
        id: Local id (managed) or truncated external id (observed).
        kind: Managed or observed.
        name: Display name.
        directory: Working directory of the agent process.
        process_name: tmux session name; None for observed sessions.
        external_id: Session id the agent itself reports in hook events.
        state: Current SessionState.
        active_tools: In-flight tool invocations, invocation id -> tool name.
        pending_prompts: Outstanding permission prompt ids.
        dimmed: Soft-idle flag set by idle notifications.
        revert_state / revert_at: Pending auto-revert and its monotonic deadline.
        remove_at: Monotonic deadline after which a terminated session is removed.
    """

    id: str
    kind: SessionKind
    name: str
    directory: str | None = None
    process_name: str | None = None
    external_id: str | None = None
    state: SessionState = SessionState.IDLE
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    active_tools: dict[str, str | None] = field(default_factory=dict)
    pending_prompts: set[str] = field(default_factory=set)
    dimmed: bool = False
    revert_state: SessionState | None = None
    revert_at: float | None = None
    remove_at: float | None = None

    @property
    def managed(self) -> bool:
        return self.kind is SessionKind.MANAGED

    @property
    def offline(self) -> bool:
        return self.state is SessionState.OFFLINE

    def touch(self) -> None:
        self.last_activity = utcnow()

    def cancel_revert(self) -> None:
        self.revert_state = None
        self.revert_at = None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation sent to subscribers and REST callers."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "observed": self.kind is SessionKind.OBSERVED,
            "name": self.name,
            "directory": self.directory,
            "process_name": self.process_name,
            "external_id": self.external_id,
            "state": self.state.value,
            "dimmed": self.dimmed,
            "active_tools": [
                {"tool_use_id": tool_id, "tool_name": tool_name}
                for tool_id, tool_name in self.active_tools.items()
            ],
            "pending_prompts": sorted(self.pending_prompts),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def to_record(self) -> dict[str, Any]:
        """Durable fields only; runtime sets and deadlines are not persisted."""
        return {
            "id": self.id,
            "name": self.name,
            "directory": self.directory,
            "process_name": self.process_name,
            "state": self.state.value,
            "external_id": self.external_id,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Session:
        def _parse_time(value: Any) -> datetime:
            if isinstance(value, datetime):
                return value
            try:
                return datetime.fromisoformat(str(value))
            except ValueError:
                return utcnow()

        return cls(
            id=str(data["id"]),
            kind=SessionKind.MANAGED,
            name=str(data.get("name") or f"Session {data['id']}"),
            directory=data.get("directory"),
            process_name=data.get("process_name"),
            external_id=data.get("external_id"),
            state=SessionState.OFFLINE,
            created_at=_parse_time(data.get("created_at")),
            last_activity=_parse_time(data.get("last_activity")),
        )
