"""GridService: wires the registry, controller, router, scheduler, hub and watcher.

Owns the background tasks (scheduler drain, permission polling, health
reconciliation) and implements the command surface shared by the REST routes
and WebSocket subscribers. Validation and not-found checks always run before
any process interaction.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import secrets
import time
from collections.abc import Callable, Iterable
from typing import Any

from agentgrid.config.schema import Config
from agentgrid.errors import (
    AgentGridError,
    AlreadyExistsError,
    NameInvalidError,
    NotFoundError,
    NotOfflineError,
    OfflineError,
    ValidationError,
)
from agentgrid.events.changes import ChangeKind, StateChange
from agentgrid.events.hooks import Unclassified, parse_hook_event
from agentgrid.events.router import EventRouter
from agentgrid.events.scheduler import EventScheduler
from agentgrid.hub.websocket import BroadcastHub
from agentgrid.logging import get_logger
from agentgrid.process.protocol import ProcessController
from agentgrid.process.tmux import TmuxController, validate_directory
from agentgrid.session.models import Session, SessionState
from agentgrid.session.registry import SessionRegistry
from agentgrid.session.storage import SessionStore
from agentgrid.watching.permission import PermissionWatcher, PromptSignal

log = get_logger("service")

MAX_DISPLAY_NAME = 64
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# Kinds after which the session id must receive no further queued events
_TERMINAL_KINDS = (ChangeKind.END, ChangeKind.REMOVED)
# Kinds that change which sessions exist, so subscribers get a fresh snapshot
_LIFECYCLE_KINDS = (ChangeKind.CREATE, ChangeKind.END, ChangeKind.REMOVED)


def validate_display_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise NameInvalidError("Session name must be a non-empty string")
    name = name.strip()
    if len(name) > MAX_DISPLAY_NAME:
        raise NameInvalidError(f"Session name longer than {MAX_DISPLAY_NAME} characters")
    if _CONTROL_CHARS_RE.search(name):
        raise NameInvalidError("Session name contains control characters")
    return name


class GridService:
    """The session orchestration engine.

    Example:
        service = GridService(config)
        await service.start()
        session = await service.create_session("api", "/srv/api")
        await service.send_prompt(session.id, "run the tests")
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: Config | None = None,
        controller: ProcessController | None = None,
        registry: SessionRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or Config()
        self.registry = registry or SessionRegistry(SessionStore(self.config.storage.data_dir))
        self.controller: ProcessController = controller or TmuxController(
            self.config.process, self.config.agent
        )
        self.router = EventRouter(self.registry, self.config.router, clock)
        self.hub = BroadcastHub(self.registry.snapshot, commands=self)
        self.scheduler = EventScheduler(
            deliver=self.hub.publish_change,
            exists=self.registry.exists,
            config=self.config.scheduler,
            clock=clock,
        )
        self.scheduler.add_drain_hook(self.expire)
        self.watcher = PermissionWatcher(
            self.registry, self.controller, self.on_prompt, self.config.watcher,
            on_cleared=self.on_prompt_cleared,
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._started_at: float | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def uptime(self) -> float:
        return time.time() - self._started_at if self._started_at else 0.0

    async def start(self) -> None:
        """Load persisted sessions, reconcile once, then start the background loops."""
        if self._tasks:
            raise RuntimeError("GridService already started")

        loaded = self.registry.load()
        log.info("Loaded %d persisted sessions", loaded)
        await self.health_check()

        self._started_at = time.time()
        self._tasks.append(asyncio.create_task(self.scheduler.start(), name="agentgrid-scheduler"))
        self._tasks.append(asyncio.create_task(self._health_loop(), name="agentgrid-health"))
        if self.config.watcher.enabled:
            self._tasks.append(asyncio.create_task(self.watcher.start(), name="agentgrid-watcher"))

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.watcher.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        await self.hub.close_all()
        log.info("GridService stopped")

    async def _health_loop(self) -> None:
        interval = self.config.health.interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.health_check()
            except AgentGridError as e:
                log.warning("Health check failed: %s", e)
            except Exception:
                log.exception("Health check failed")

    async def health_check(self) -> bool:
        """Reconcile managed session states with the live process list."""
        live = await self.controller.list()
        changed = self.registry.reconcile_health(live)
        if changed:
            await self.hub.broadcast_sessions()
        return changed

    def status(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "clients": self.hub.connection_count,
            "sessions": len(self.registry.list_sessions()),
        }

    # -------------------------------------------------------------------------
    # Change publication
    # -------------------------------------------------------------------------

    async def publish(self, changes: Iterable[StateChange]) -> None:
        """Hand changes to the scheduler, clearing queues for dead sessions first."""
        lifecycle = False
        for change in changes:
            if change.kind in _TERMINAL_KINDS:
                self.scheduler.clear_session(change.session_id)
                self.watcher.forget(change.session_id)
            lifecycle = lifecycle or change.kind in _LIFECYCLE_KINDS
            await self.scheduler.enqueue(change)
        if lifecycle:
            await self.hub.broadcast_sessions()

    async def expire(self, now: float) -> None:
        """Drain hook: apply auto-revert and removal deadlines."""
        await self.publish(self.router.expire(now))

    # -------------------------------------------------------------------------
    # Hook ingress
    # -------------------------------------------------------------------------

    async def ingest_hook(self, payload: Any) -> None:
        """Classify and route one hook payload. Never raises."""
        try:
            event = parse_hook_event(payload)
            if isinstance(event, Unclassified):
                log.debug("Unclassified hook event: %s", event.reason)
                await self._broadcast_raw(payload)
                await self.publish(self.router.route_unclassified(event))
                return
            await self.publish(self.router.route(event))
        except Exception:
            log.exception("Failed to route hook event")
            with contextlib.suppress(Exception):
                await self._broadcast_raw(payload)

    async def _broadcast_raw(self, payload: Any) -> None:
        await self.hub.broadcast({"type": "event", "kind": "raw", "event": payload})

    # -------------------------------------------------------------------------
    # Permission prompts
    # -------------------------------------------------------------------------

    async def on_prompt(self, session: Session, signal: PromptSignal) -> None:
        """Watcher callback: surface a detected prompt to subscribers."""
        await self.hub.broadcast(
            {"type": "permission-prompt", "session_id": session.id, **signal.to_dict()}
        )
        await self.publish(
            [
                StateChange(
                    session.id,
                    ChangeKind.STATE,
                    state=SessionState.WAITING,
                    details={"prompt_id": signal.prompt_id},
                )
            ]
        )
        await self.hub.broadcast_sessions()

    async def on_prompt_cleared(self, session: Session, prompt_id: str) -> None:
        """Watcher callback: a prompt was answered outside AgentGrid."""
        await self.publish(
            [
                StateChange(
                    session.id,
                    ChangeKind.STATE,
                    state=session.state,
                    details={"prompt_cleared": prompt_id},
                )
            ]
        )
        await self.hub.broadcast_sessions()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def list_sessions(self) -> list[dict[str, Any]]:
        return self.registry.snapshot()

    def get_session(self, session_id: str) -> Session:
        session = self.registry.lookup(session_id)
        if session is None:
            raise NotFoundError(f"Session '{session_id}' not found")
        return session

    async def create_session(
        self,
        name: str | None = None,
        directory: str | None = None,
        continue_session: bool = False,
    ) -> Session:
        """Register a managed session, then spawn its process.

        The record exists before the spawn so hook events racing the agent's
        startup can auto-link to it. A failed spawn removes the record.
        """
        display_name = validate_display_name(name) if name is not None else None
        workdir = validate_directory(directory) if directory else os.getcwd()
        if display_name and self.registry.find_by_name(display_name):
            raise AlreadyExistsError(f"Session '{display_name}' already exists")

        process_name = f"{self.config.process.name_prefix}-{secrets.token_hex(4)}"
        session = self.registry.create(display_name or "", workdir, process_name)
        try:
            await self.controller.create(process_name, workdir, continue_session)
        except Exception:
            self.registry.delete(session.id)
            raise

        await self.hub.broadcast_sessions()
        return session

    def _live(self, session_id: str) -> Session:
        session = self.registry.require(session_id)
        if session.offline:
            raise OfflineError(f"Session '{session_id}' is offline")
        return session

    async def send_prompt(self, session_id: str, text: str) -> Session:
        session = self._live(session_id)
        if not isinstance(text, str) or not text:
            raise ValidationError("Missing prompt text")

        await self.controller.inject(session.process_name, text)
        return await self._input_delivered(session)

    async def answer_permission(self, session_id: str, choice: str) -> Session:
        session = self._live(session_id)
        await self.controller.send_keys(session.process_name, choice)
        return await self._input_delivered(session)

    async def _input_delivered(self, session: Session) -> Session:
        session = self.registry.mark_working(session.id)
        self.watcher.forget(session.id)
        await self.publish(
            [StateChange(session.id, ChangeKind.STATE, state=SessionState.WORKING)]
        )
        await self.hub.broadcast_sessions()
        return session

    async def cancel(self, session_id: str) -> None:
        session = self.registry.require(session_id)
        await self.controller.cancel(session.process_name)

    async def get_output(self, session_id: str, lines: int = 100) -> str:
        session = self.registry.require(session_id)
        return await self.controller.capture(session.process_name, lines)

    async def delete_session(self, session_id: str) -> None:
        """Kill the process and forget the session, its observed twin included."""
        session = self.registry.require(session_id)

        try:
            await self.controller.kill(session.process_name)
        except AgentGridError as e:
            log.warning("Failed to kill %s while deleting %s: %s", session.process_name, session_id, e)

        observed = None
        if session.external_id:
            observed = self.registry.remove_observed(session.external_id)
        elif session.directory:
            twin = self.registry.find_observed_by_directory(session.directory)
            if twin is not None and twin.external_id:
                observed = self.registry.remove_observed(twin.external_id)

        changes = [
            StateChange(
                session.id,
                ChangeKind.END,
                state=SessionState.OFFLINE,
                details={"external_id": session.external_id},
            )
        ]
        if observed is not None:
            changes.append(StateChange(observed.id, ChangeKind.REMOVED))

        self.registry.delete(session.id)
        await self.publish(changes)

    async def restart_session(self, session_id: str) -> Session:
        """Re-spawn an offline session's process with the continue flag."""
        session = self.registry.require(session_id)
        if not session.offline:
            raise NotOfflineError(f"Session '{session_id}' is not offline")

        await self.controller.create(session.process_name, session.directory or os.getcwd(), True)
        self.watcher.forget(session.id)
        session = self.registry.update(
            session.id, state=SessionState.IDLE, external_id=None, remove_at=None
        )
        await self.hub.broadcast_sessions()
        return session

    async def rename_session(self, session_id: str, name: str) -> Session:
        self.registry.require(session_id)
        session = self.registry.update(session_id, name=validate_display_name(name))
        await self.hub.broadcast_sessions()
        return session

    async def link_session(self, session_id: str, external_id: str) -> Session:
        if not isinstance(external_id, str) or not external_id:
            raise ValidationError("Missing external id")
        self.registry.require(session_id)

        absorbed = self.registry.get_observed(external_id)
        session = self.registry.link_external_id(external_id, session_id)
        if absorbed is not None:
            await self.publish(
                [StateChange(absorbed.id, ChangeKind.REMOVED, details={"linked_to": session.id})]
            )
        await self.hub.broadcast_sessions()
        return session
