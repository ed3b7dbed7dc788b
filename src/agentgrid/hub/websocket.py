"""WebSocket fan-out to subscribers and fan-in of subscriber commands."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from typing import Any, Protocol

from fastapi import WebSocket

from agentgrid.errors import AgentGridError, ValidationError
from agentgrid.events.changes import StateChange
from agentgrid.logging import get_logger

log = get_logger("hub")


class CommandHandler(Protocol):
    """The subset of the command surface reachable from a subscriber."""

    async def send_prompt(self, session_id: str, text: str) -> Any: ...

    async def cancel(self, session_id: str) -> Any: ...

    async def answer_permission(self, session_id: str, choice: str) -> Any: ...


def _field(message: dict[str, Any], *names: str) -> Any:
    for name in names:
        value = message.get(name)
        if value:
            return value
    return None


class BroadcastHub:
    """Tracks subscriber connections and pushes every message to all of them.

    A subscriber that fails a send is pruned. Command acknowledgments are
    sent to the issuing subscriber only.
    """

    def __init__(
        self,
        snapshot: Callable[[], list[dict[str, Any]]],
        commands: CommandHandler | None = None,
    ) -> None:
        self._snapshot = snapshot
        self.commands = commands
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a subscriber and send it the full session snapshot."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        log.debug("Subscriber connected (total: %d)", len(self._connections))
        await self.send(websocket, {"type": "init", "sessions": self._snapshot()})

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        log.debug("Subscriber disconnected (total: %d)", len(self._connections))

    async def send(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        """Send to one subscriber. Returns False (and prunes it) on failure."""
        try:
            await websocket.send_json(message)
        except Exception:
            async with self._lock:
                self._connections.discard(websocket)
            return False
        return True

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send to every subscriber. Returns the number of successful sends."""
        async with self._lock:
            connections = self._connections.copy()

        if not connections:
            return 0

        dead_connections: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_json(message)
            except Exception:
                dead_connections.append(websocket)

        if dead_connections:
            async with self._lock:
                for ws in dead_connections:
                    self._connections.discard(ws)
            log.debug("Pruned %d dead subscribers", len(dead_connections))

        return len(connections) - len(dead_connections)

    async def publish_change(self, change: StateChange) -> None:
        """Scheduler delivery target."""
        await self.broadcast(change.to_message())

    async def broadcast_sessions(self) -> None:
        await self.broadcast({"type": "sessions", "sessions": self._snapshot()})

    async def handle_message(self, websocket: WebSocket, data: str | dict[str, Any]) -> None:
        """Dispatch one inbound subscriber message."""
        if isinstance(data, str):
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await self._error(websocket, None, ValidationError("Message is not valid JSON"))
                return
        else:
            message = data

        if not isinstance(message, dict):
            await self._error(websocket, None, ValidationError("Message must be an object"))
            return

        command = str(message.get("type", "")).replace("_", "-")

        if command == "ping":
            await self.send(websocket, {"type": "pong"})
            return
        if command == "get-sessions":
            await self.send(websocket, {"type": "sessions", "sessions": self._snapshot()})
            return
        if self.commands is None:
            await self._error(websocket, command, AgentGridError("Commands are not available"))
            return

        session_id = _field(message, "session_id", "sessionId")

        try:
            if command == "send-prompt":
                text = _field(message, "text", "prompt")
                if not session_id or not text:
                    raise ValidationError("Missing session_id or text")
                await self.commands.send_prompt(session_id, text)
            elif command == "cancel":
                if not session_id:
                    raise ValidationError("Missing session_id")
                await self.commands.cancel(session_id)
            elif command == "permission-response":
                choice = _field(message, "choice", "response")
                if not session_id or not choice:
                    raise ValidationError("Missing session_id or choice")
                await self.commands.answer_permission(session_id, str(choice))
            else:
                raise ValidationError(f"Unknown message type '{message.get('type')}'")
        except AgentGridError as e:
            await self._error(websocket, command, e)
            return
        except Exception as e:
            log.exception("Subscriber command %s failed", command)
            await self._error(websocket, command, AgentGridError(str(e)))
            return

        await self.send(websocket, {"type": "ack", "command": command, "session_id": session_id})

    async def _error(self, websocket: WebSocket, command: str | None, error: AgentGridError) -> None:
        await self.send(
            websocket,
            {"type": "error", "command": command, "error": error.message, "code": error.code},
        )

    async def close_all(self, reason: str = "Server shutting down") -> None:
        """Close all subscriber connections gracefully."""
        async with self._lock:
            connections = list(self._connections)
            self._connections.clear()

        for websocket in connections:
            with contextlib.suppress(Exception):
                await websocket.close(code=1001, reason=reason)
        log.info("Closed %d subscriber connections", len(connections))
