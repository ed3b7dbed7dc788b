"""EventRouter: applies hook events to the registry as state transitions.

Transition table:

    start                   -> idle (create)
    prompt-submitted        -> working, undim
    tool-invoked            -> track invocation, no state change
    tool-completed ok       -> yes, auto-revert to working/idle after a delay
    tool-completed blocked  -> no
    stopped / substop       -> idle, clear invocations and prompts
    terminated              -> offline, removed after a grace delay
    idle-notification       -> dimmed, no state change
    notification/permission -> waiting, prompt recorded

While prompts are outstanding a tool completion does not move the session out
of waiting. Auto-revert and removal are deadlines on the session record that
``expire()`` applies from the drain loop.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable

from agentgrid.config.schema import RouterConfig
from agentgrid.events.changes import ChangeKind, StateChange
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
)
from agentgrid.logging import get_logger
from agentgrid.session.models import Session, SessionState
from agentgrid.session.registry import SessionRegistry

log = get_logger("router")


def _generated_prompt_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class EventRouter:
    """Classifies hook events against the registry and emits StateChange records."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: RouterConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._config = config or RouterConfig()
        self._clock = clock

    def route(self, event: HookEvent) -> list[StateChange]:
        """Apply one classified event. Returns the resulting changes in order."""
        now = self._clock()
        changes: list[StateChange] = []

        session = self._resolve(event, changes, now)
        if session is None:
            if isinstance(event, Terminated):
                return changes
            initial = SessionState.IDLE if isinstance(event, (SessionStarted, Stopped)) else SessionState.WORKING
            session, _ = self._registry.upsert_observed(event.session_id, event.cwd, initial)
            changes.append(self._change(session, ChangeKind.CREATE, now, event))
            if isinstance(event, SessionStarted):
                return changes

        if session.offline and not isinstance(event, SessionStarted):
            log.debug("Ignoring %s for offline session %s", event.name, session.id)
            return changes

        with self._registry.edit(session):
            changes.extend(self._apply(session, event, now))
        return changes

    def route_unclassified(self, event: Unclassified) -> list[StateChange]:
        """Unclassified events never mutate state; known sessions get a pulse."""
        if event.session_id is None:
            return []
        session = self._registry.find_by_external_id(event.session_id)
        if session is None or session.offline:
            return []
        raw = event.raw if isinstance(event.raw, dict) else None
        return [StateChange(session.id, ChangeKind.PULSE, event=raw, created_at=self._clock())]

    def expire(self, now: float | None = None) -> list[StateChange]:
        """Apply auto-reverts and removals whose deadlines have passed."""
        now = self._clock() if now is None else now
        changes: list[StateChange] = []

        for session in self._registry.all_sessions():
            if session.revert_at is not None and now >= session.revert_at:
                with self._registry.edit(session):
                    session.cancel_revert()
                    if session.state is SessionState.YES and not session.pending_prompts:
                        session.state = SessionState.WORKING if session.active_tools else SessionState.IDLE
                        changes.append(self._change(session, ChangeKind.STATE, now, details={"auto_revert": True}))

            if session.remove_at is not None and now >= session.remove_at:
                session.remove_at = None
                if not session.managed and session.external_id:
                    self._registry.remove_observed(session.external_id)
                changes.append(self._change(session, ChangeKind.REMOVED, now))
                log.debug("Removed terminated session %s", session.id)

        return changes

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _resolve(self, event: HookEvent, changes: list[StateChange], now: float) -> Session | None:
        """Find the session for an event, auto-linking by working directory."""
        session = self._registry.find_by_external_id(event.session_id)
        if event.cwd and (session is None or not session.managed):
            candidate = self._registry.find_unlinked_by_directory(event.cwd)
            if candidate is not None:
                absorbed = self._registry.get_observed(event.session_id)
                session = self._registry.link_external_id(event.session_id, candidate.id)
                if absorbed is not None:
                    changes.append(self._change(absorbed, ChangeKind.REMOVED, now, details={"linked_to": session.id}))
        return session

    def _change(
        self,
        session: Session,
        kind: ChangeKind,
        now: float,
        event: HookEvent | None = None,
        details: dict | None = None,
        with_state: bool = True,
    ) -> StateChange:
        return StateChange(
            session_id=session.id,
            kind=kind,
            state=session.state if with_state else None,
            details=details or {},
            event=event.raw if event is not None else None,
            created_at=now,
        )

    def _apply(self, session: Session, event: HookEvent, now: float) -> list[StateChange]:
        if isinstance(event, SessionStarted):
            session.state = SessionState.IDLE
            session.active_tools.clear()
            session.pending_prompts.clear()
            session.dimmed = False
            session.cancel_revert()
            session.remove_at = None
            return [self._change(session, ChangeKind.CREATE, now, event)]

        if isinstance(event, PromptSubmitted):
            was_dimmed = session.dimmed
            session.state = SessionState.WORKING
            session.pending_prompts.clear()
            session.dimmed = False
            session.cancel_revert()
            return [self._change(session, ChangeKind.STATE, now, event, {"undim": was_dimmed})]

        if isinstance(event, ToolInvoked):
            if event.tool_use_id:
                session.active_tools[event.tool_use_id] = event.tool_name
            return [
                self._change(
                    session, ChangeKind.TOOL_START, now, event,
                    {"tool_use_id": event.tool_use_id, "tool_name": event.tool_name},
                    with_state=False,
                )
            ]

        if isinstance(event, ToolCompleted):
            return [self._complete_tool(session, event, now)]

        if isinstance(event, Stopped):
            session.state = SessionState.IDLE
            session.active_tools.clear()
            session.pending_prompts.clear()
            session.cancel_revert()
            return [self._change(session, ChangeKind.STATE, now, event, {"clear_tools": True})]

        if isinstance(event, Terminated):
            session.state = SessionState.OFFLINE
            session.active_tools.clear()
            session.pending_prompts.clear()
            session.cancel_revert()
            session.remove_at = now + self._config.removal_grace
            return [self._change(session, ChangeKind.END, now, event)]

        if isinstance(event, IdleNotification):
            session.dimmed = True
            return [self._change(session, ChangeKind.DIM, now, event, {"dimmed": True}, with_state=False)]

        if isinstance(event, (Notification, PermissionRequested)):
            if isinstance(event, Notification):
                prompt_id = event.notification_id or _generated_prompt_id("notification")
            else:
                prompt_id = event.tool_use_id or _generated_prompt_id("permission")
            session.pending_prompts.add(prompt_id)
            session.state = SessionState.WAITING
            session.cancel_revert()
            return [self._change(session, ChangeKind.STATE, now, event, {"prompt_id": prompt_id})]

        log.warning("No transition for %s", type(event).__name__)
        return [self._change(session, ChangeKind.PULSE, now, event, with_state=False)]

    def _complete_tool(self, session: Session, event: ToolCompleted, now: float) -> StateChange:
        if event.tool_use_id:
            session.active_tools.pop(event.tool_use_id, None)
            session.pending_prompts.discard(event.tool_use_id)

        details: dict = {"tool_use_id": event.tool_use_id, "tool_name": event.tool_name}

        if session.pending_prompts:
            # Prompts take precedence; the outcome is not shown until they clear
            return self._change(session, ChangeKind.TOOL_END, now, event, details, with_state=False)

        if event.blocked:
            session.state = SessionState.NO
            session.cancel_revert()
            details["auto_revert"] = None
        else:
            session.state = SessionState.YES
            session.revert_state = SessionState.WORKING if session.active_tools else SessionState.IDLE
            session.revert_at = now + self._config.revert_delay
            details["auto_revert"] = session.revert_state.value
            details["revert_delay"] = self._config.revert_delay
        return self._change(session, ChangeKind.TOOL_END, now, event, details)
