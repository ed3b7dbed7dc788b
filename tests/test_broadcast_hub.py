"""Tests for the BroadcastHub."""

from __future__ import annotations

import json

import pytest

from agentgrid.errors import NotFoundError
from agentgrid.events import ChangeKind, StateChange
from agentgrid.hub import BroadcastHub
from agentgrid.session import SessionState


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self, should_fail: bool = False):
        self.should_fail = should_fail
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.sent_messages: list = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.should_fail:
            raise Exception("WebSocket connection failed")
        self.sent_messages.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    @property
    def last(self) -> dict:
        return self.sent_messages[-1]


class RecordingCommands:
    """Command handler that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.error: Exception | None = None

    async def _record(self, *call) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append(call)

    async def send_prompt(self, session_id: str, text: str) -> None:
        await self._record("send_prompt", session_id, text)

    async def cancel(self, session_id: str) -> None:
        await self._record("cancel", session_id)

    async def answer_permission(self, session_id: str, choice: str) -> None:
        await self._record("answer_permission", session_id, choice)


SNAPSHOT = [{"id": "s1", "name": "api", "state": "idle"}]


@pytest.fixture
def commands() -> RecordingCommands:
    return RecordingCommands()


@pytest.fixture
def hub(commands: RecordingCommands) -> BroadcastHub:
    """Create a fresh BroadcastHub for each test."""
    return BroadcastHub(lambda: SNAPSHOT, commands=commands)


class TestConnections:
    """Tests for subscriber tracking."""

    @pytest.mark.asyncio
    async def test_connect_sends_init(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.connect(ws)

        assert ws.accepted
        assert hub.connection_count == 1
        assert ws.sent_messages == [{"type": "init", "sessions": SNAPSHOT}]

    @pytest.mark.asyncio
    async def test_disconnect(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.connect(ws)
        await hub.disconnect(ws)
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_harmless(self, hub: BroadcastHub) -> None:
        await hub.disconnect(MockWebSocket())
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_close_all(self, hub: BroadcastHub) -> None:
        sockets = [MockWebSocket() for _ in range(3)]
        for ws in sockets:
            await hub.connect(ws)

        await hub.close_all("bye")

        assert hub.connection_count == 0
        assert all(ws.closed and ws.close_code == 1001 and ws.close_reason == "bye" for ws in sockets)


class TestBroadcast:
    """Tests for fan-out."""

    @pytest.mark.asyncio
    async def test_no_subscribers(self, hub: BroadcastHub) -> None:
        assert await hub.broadcast({"type": "x"}) == 0

    @pytest.mark.asyncio
    async def test_all_subscribers_receive(self, hub: BroadcastHub) -> None:
        first, second = MockWebSocket(), MockWebSocket()
        await hub.connect(first)
        await hub.connect(second)

        assert await hub.broadcast({"type": "x"}) == 2
        assert first.last == second.last == {"type": "x"}

    @pytest.mark.asyncio
    async def test_dead_subscriber_pruned(self, hub: BroadcastHub) -> None:
        good, bad = MockWebSocket(), MockWebSocket()
        await hub.connect(good)
        await hub.connect(bad)
        bad.should_fail = True

        assert await hub.broadcast({"type": "x"}) == 1
        assert hub.connection_count == 1
        assert good.last == {"type": "x"}

    @pytest.mark.asyncio
    async def test_failed_init_prunes(self, hub: BroadcastHub) -> None:
        await hub.connect(MockWebSocket(should_fail=True))
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_publish_change(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.connect(ws)
        await hub.publish_change(StateChange("s1", ChangeKind.STATE, state=SessionState.WORKING))
        assert ws.last == {"type": "event", "kind": "state", "session_id": "s1", "state": "working"}

    @pytest.mark.asyncio
    async def test_broadcast_sessions(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.connect(ws)
        await hub.broadcast_sessions()
        assert ws.last == {"type": "sessions", "sessions": SNAPSHOT}


class TestHandleMessage:
    """Tests for inbound subscriber messages."""

    @pytest.mark.asyncio
    async def test_ping(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, json.dumps({"type": "ping"}))
        assert ws.last == {"type": "pong"}

    @pytest.mark.asyncio
    async def test_get_sessions(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "get_sessions"})
        assert ws.last == {"type": "sessions", "sessions": SNAPSHOT}

    @pytest.mark.asyncio
    async def test_send_prompt_acked(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "send-prompt", "session_id": "s1", "text": "hello"})
        assert commands.calls == [("send_prompt", "s1", "hello")]
        assert ws.last == {"type": "ack", "command": "send-prompt", "session_id": "s1"}

    @pytest.mark.asyncio
    async def test_camel_case_fields(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "send_prompt", "sessionId": "s1", "prompt": "hi"})
        assert commands.calls == [("send_prompt", "s1", "hi")]

    @pytest.mark.asyncio
    async def test_cancel(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        await hub.handle_message(MockWebSocket(), {"type": "cancel", "session_id": "s1"})
        assert commands.calls == [("cancel", "s1")]

    @pytest.mark.asyncio
    async def test_permission_response(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        await hub.handle_message(MockWebSocket(), {"type": "permission-response", "session_id": "s1", "choice": 1})
        assert commands.calls == [("answer_permission", "s1", "1")]

    @pytest.mark.asyncio
    async def test_ack_only_to_sender(self, hub: BroadcastHub) -> None:
        sender, other = MockWebSocket(), MockWebSocket()
        await hub.connect(sender)
        await hub.connect(other)
        await hub.handle_message(sender, {"type": "cancel", "session_id": "s1"})
        assert sender.last["type"] == "ack"
        assert other.last["type"] == "init"

    @pytest.mark.asyncio
    async def test_invalid_json(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, "{not json")
        assert ws.last["type"] == "error"
        assert ws.last["code"] == "invalid"

    @pytest.mark.asyncio
    async def test_not_an_object(self, hub: BroadcastHub) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, "[1, 2]")
        assert ws.last["type"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_type(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "reboot", "session_id": "s1"})
        assert ws.last["type"] == "error"
        assert ws.last["command"] == "reboot"
        assert commands.calls == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "send-prompt", "session_id": "s1"})
        assert ws.last["type"] == "error"
        assert commands.calls == []

    @pytest.mark.asyncio
    async def test_command_error_reported(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        commands.error = NotFoundError("Session 'nope' not found")
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "cancel", "session_id": "nope"})
        assert ws.last == {
            "type": "error",
            "command": "cancel",
            "error": "Session 'nope' not found",
            "code": "not_found",
        }

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, hub: BroadcastHub, commands: RecordingCommands) -> None:
        commands.error = RuntimeError("boom")
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "cancel", "session_id": "s1"})
        assert ws.last["type"] == "error"
        assert ws.last["error"] == "boom"

    @pytest.mark.asyncio
    async def test_no_command_handler(self) -> None:
        hub = BroadcastHub(lambda: [])
        ws = MockWebSocket()
        await hub.handle_message(ws, {"type": "cancel", "session_id": "s1"})
        assert ws.last["type"] == "error"
