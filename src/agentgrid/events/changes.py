"""Normalized state-change records produced by the router and consumed by the scheduler."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from agentgrid.session.models import SessionState


class Priority(IntEnum):
    """Scheduling class. Lower value is delivered first."""

    IMMEDIATE = 0  # Bypass the queue entirely
    HIGH = 1  # Queued FIFO
    NORMAL = 2  # Coalesced, latest wins
    LOW = 3  # Coalesced with a combined count


class ChangeKind(Enum):
    CREATE = "create"
    END = "end"
    REMOVED = "removed"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    STATE = "state"
    PULSE = "pulse"
    DIM = "dim"


_PRIORITIES = {
    ChangeKind.CREATE: Priority.IMMEDIATE,
    ChangeKind.END: Priority.IMMEDIATE,
    ChangeKind.REMOVED: Priority.IMMEDIATE,
    ChangeKind.TOOL_START: Priority.HIGH,
    ChangeKind.TOOL_END: Priority.HIGH,
    ChangeKind.STATE: Priority.NORMAL,
    ChangeKind.PULSE: Priority.LOW,
    ChangeKind.DIM: Priority.LOW,
}


@dataclass
class StateChange:
    """One change to a session, as seen by subscribers.

    Attributes:
        session_id: Record id of the session (managed id or truncated external id).
        kind: What happened.
        state: Resulting session state, when the change carries one.
        details: Kind-specific fields (tool ids, auto-revert target, dim flag...).
        event: The raw hook payload that caused the change, if any.
        created_at: Monotonic creation time.
        combined_count: How many Low changes this delivery stands for.
    """

    session_id: str
    kind: ChangeKind
    state: SessionState | None = None
    details: dict[str, Any] = field(default_factory=dict)
    event: dict[str, Any] | None = None
    created_at: float = field(default_factory=time.monotonic)
    combined_count: int = 1

    @property
    def priority(self) -> Priority:
        return _PRIORITIES[self.kind]

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "type": "event",
            "kind": self.kind.value,
            "session_id": self.session_id,
        }
        if self.state is not None:
            message["state"] = self.state.value
        message.update(self.details)
        if self.combined_count > 1:
            message["combined_count"] = self.combined_count
        if self.event is not None:
            message["event"] = self.event
        return message
