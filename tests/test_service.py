"""End-to-end tests for GridService with an in-memory process controller."""

from __future__ import annotations

import pytest

from agentgrid.config.schema import Config
from agentgrid.errors import (
    AlreadyExistsError,
    DirectoryInvalidError,
    NameInvalidError,
    NotFoundError,
    NotOfflineError,
    OfflineError,
    ProcessError,
    ValidationError,
)
from agentgrid.service import GridService, validate_display_name
from agentgrid.session import SessionState, SessionStore

PROMPT_SCREEN = """\
 Bash command
   npm test

 Do you want to proceed?
 ❯ 1. Yes
   2. No
"""


class Subscriber:
    """Collects everything the hub sends."""

    def __init__(self) -> None:
        self.sent_messages: list[dict] = []

    async def accept(self) -> None:
        pass

    async def send_json(self, message: dict) -> None:
        self.sent_messages.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        pass

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.sent_messages if m["type"] == kind]

    def events(self, session_id: str | None = None) -> list[dict]:
        return [
            m for m in self.of_type("event")
            if m.get("kind") != "raw" and (session_id is None or m["session_id"] == session_id)
        ]


@pytest.fixture
def service(config: Config, controller, clock) -> GridService:
    return GridService(config, controller=controller, clock=clock)


@pytest.fixture
async def subscriber(service: GridService) -> Subscriber:
    ws = Subscriber()
    await service.hub.connect(ws)
    return ws


async def settle(service: GridService, clock, seconds: float = 0.5) -> None:
    """Run scheduler ticks on the fake clock."""
    end = clock() + seconds
    while clock() < end:
        await service.scheduler.drain()
        clock.advance(0.016)


def hook(name: str, session_id: str = "ext-1", **extra) -> dict:
    return {"session_id": session_id, "hook_event_name": name, **extra}


class TestValidateDisplayName:
    """Tests for display name rules."""

    def test_strips(self) -> None:
        assert validate_display_name("  api  ") == "api"

    @pytest.mark.parametrize("name", ["", "   ", None, 42, "x" * 65, "bad\nname", "tab\there"])
    def test_rejects(self, name) -> None:
        with pytest.raises(NameInvalidError):
            validate_display_name(name)


class TestLifecycleFlow:
    """A managed session from creation to removal."""

    @pytest.mark.asyncio
    async def test_full_flow(self, service: GridService, controller, subscriber: Subscriber, clock, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        assert session.state is SessionState.IDLE
        assert controller.workdirs[session.process_name] == workdir

        await service.ingest_hook(hook("SessionStart", cwd=workdir))
        assert session.external_id == "ext-1"

        await service.send_prompt(session.id, "run the tests")
        assert controller.injected == [(session.process_name, "run the tests")]
        assert session.state is SessionState.WORKING
        await settle(service, clock)

        await service.ingest_hook(hook("PreToolUse", tool_use_id="t1", tool_name="Bash"))
        await settle(service, clock)
        await service.ingest_hook(hook("PostToolUse", tool_use_id="t1"))
        assert session.state is SessionState.YES
        await settle(service, clock, 2.0)
        assert session.state is SessionState.IDLE

        await service.ingest_hook(hook("SessionEnd"))
        assert session.state is SessionState.OFFLINE
        await settle(service, clock, 2.5)

        kinds = [(m["kind"], m.get("state")) for m in subscriber.events(session.id)]
        assert kinds == [
            ("create", "idle"),
            ("state", "working"),
            ("tool_start", None),
            ("tool_end", "yes"),
            ("state", "idle"),
            ("end", "offline"),
            ("removed", "offline"),
        ]
        assert subscriber.of_type("sessions")[-1]["sessions"] == []

    @pytest.mark.asyncio
    async def test_create_persists(self, service: GridService, config: Config, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        stored = SessionStore(config.storage.data_dir).load()
        assert [s.id for s in stored] == [session.id]

    @pytest.mark.asyncio
    async def test_create_defaults(self, service: GridService, controller, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        session = await service.create_session()
        assert session.name.startswith("Session ")
        assert session.process_name.startswith("agentgrid-")

    @pytest.mark.asyncio
    async def test_create_continue_flag(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir, continue_session=True)
        assert controller.calls[0] == ("create", session.process_name, workdir, True)


class TestCreateValidation:
    """Tests for create failures."""

    @pytest.mark.asyncio
    async def test_duplicate_name(self, service: GridService, controller, workdir: str) -> None:
        await service.create_session("api", workdir)
        with pytest.raises(AlreadyExistsError):
            await service.create_session("api", workdir)
        assert len(controller.panes) == 1

    @pytest.mark.asyncio
    async def test_bad_directory_never_spawns(self, service: GridService, controller, tmp_path) -> None:
        with pytest.raises(DirectoryInvalidError):
            await service.create_session("api", str(tmp_path / "missing"))
        assert controller.process_calls() == []

    @pytest.mark.asyncio
    async def test_bad_name_never_spawns(self, service: GridService, controller, workdir: str) -> None:
        with pytest.raises(NameInvalidError):
            await service.create_session("bad\x1bname", workdir)
        assert controller.process_calls() == []

    @pytest.mark.asyncio
    async def test_spawn_failure_rolls_back(self, service: GridService, controller, workdir: str) -> None:
        controller.fail_create = ProcessError("tmux exploded")
        with pytest.raises(ProcessError):
            await service.create_session("api", workdir)
        assert service.registry.list_managed() == []


class TestCommands:
    """Tests for the command surface."""

    @pytest.mark.asyncio
    async def test_unknown_session_never_touches_process(self, service: GridService, controller) -> None:
        for call in (
            service.send_prompt("nope", "hi"),
            service.cancel("nope"),
            service.answer_permission("nope", "1"),
            service.get_output("nope"),
            service.delete_session("nope"),
            service.restart_session("nope"),
            service.rename_session("nope", "x"),
            service.link_session("nope", "ext-1"),
        ):
            with pytest.raises(NotFoundError):
                await call
        assert controller.process_calls() == []

    @pytest.mark.asyncio
    async def test_get_session(self, service: GridService, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        assert service.get_session(session.id) is session
        with pytest.raises(NotFoundError):
            service.get_session("nope")

    @pytest.mark.asyncio
    async def test_empty_prompt(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        with pytest.raises(ValidationError):
            await service.send_prompt(session.id, "")
        assert controller.injected == []

    @pytest.mark.asyncio
    async def test_offline_rejects_input(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        service.registry.set_state(session.id, SessionState.OFFLINE)
        with pytest.raises(OfflineError):
            await service.send_prompt(session.id, "hi")
        with pytest.raises(OfflineError):
            await service.answer_permission(session.id, "1")
        assert controller.injected == [] and controller.keys == []

    @pytest.mark.asyncio
    async def test_cancel_and_output(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        controller.set_output(session.process_name, "line 1\nline 2\nline 3")

        await service.cancel(session.id)
        assert ("cancel", session.process_name) in controller.calls
        assert await service.get_output(session.id, 2) == "line 2\nline 3"

    @pytest.mark.asyncio
    async def test_rename(self, service: GridService, subscriber: Subscriber, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        await service.rename_session(session.id, "web")
        assert session.name == "web"
        assert subscriber.of_type("sessions")[-1]["sessions"][0]["name"] == "web"

    @pytest.mark.asyncio
    async def test_rename_invalid(self, service: GridService, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        with pytest.raises(NameInvalidError):
            await service.rename_session(session.id, "")

    @pytest.mark.asyncio
    async def test_link_absorbs_observed(self, service: GridService, subscriber: Subscriber, workdir: str) -> None:
        await service.ingest_hook(hook("PreToolUse", session_id="ext-obs-123", tool_use_id="t1"))
        session = await service.create_session("api", workdir)

        await service.link_session(session.id, "ext-obs-123")

        assert session.external_id == "ext-obs-123"
        assert session.active_tools == {"t1": None}
        removed = [m for m in subscriber.events() if m["kind"] == "removed"]
        assert removed == [{"type": "event", "kind": "removed", "session_id": "ext-obs-", "linked_to": session.id}]

    @pytest.mark.asyncio
    async def test_link_requires_id(self, service: GridService, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        with pytest.raises(ValidationError):
            await service.link_session(session.id, "")


class TestDeleteAndRestart:
    """Tests for delete and restart."""

    @pytest.mark.asyncio
    async def test_delete(self, service: GridService, controller, subscriber: Subscriber, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        service.registry.link_external_id("ext-1", session.id)
        service.registry.upsert_observed("ext-1")

        await service.delete_session(session.id)

        assert session.process_name not in controller.panes
        assert service.registry.get(session.id) is None
        assert service.registry.get_observed("ext-1") is None
        kinds = [m["kind"] for m in subscriber.events()]
        assert kinds[-2:] == ["end", "removed"]
        assert subscriber.of_type("event")[-2]["external_id"] == "ext-1"

    @pytest.mark.asyncio
    async def test_delete_removes_directory_twin(self, service: GridService, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        await service.ingest_hook(hook("PreToolUse", session_id="ext-twin", tool_use_id="t1"))
        service.registry.get_observed("ext-twin").directory = workdir

        await service.delete_session(session.id)
        assert service.registry.get_observed("ext-twin") is None

    @pytest.mark.asyncio
    async def test_delete_dead_process(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        controller.panes.clear()
        await service.delete_session(session.id)
        assert service.registry.get(session.id) is None

    @pytest.mark.asyncio
    async def test_delete_clears_pending_events(self, service: GridService, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        await service.send_prompt(session.id, "hi")
        assert service.scheduler.has_pending(session.id)
        await service.delete_session(session.id)
        assert not service.scheduler.has_pending(session.id)

    @pytest.mark.asyncio
    async def test_restart_requires_offline(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        with pytest.raises(NotOfflineError):
            await service.restart_session(session.id)
        assert len([c for c in controller.calls if c[0] == "create"]) == 1

    @pytest.mark.asyncio
    async def test_restart(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        service.registry.link_external_id("ext-1", session.id)
        controller.panes.clear()
        await service.health_check()
        assert session.state is SessionState.OFFLINE

        await service.restart_session(session.id)

        assert session.state is SessionState.IDLE
        assert session.external_id is None
        assert controller.calls[-1] == ("create", session.process_name, workdir, True)


class TestHealth:
    """Tests for process reconciliation."""

    @pytest.mark.asyncio
    async def test_health_check(self, service: GridService, controller, subscriber: Subscriber, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        assert await service.health_check() is False

        controller.panes.clear()
        assert await service.health_check() is True
        assert session.state is SessionState.OFFLINE
        assert subscriber.of_type("sessions")[-1]["sessions"] == []

    @pytest.mark.asyncio
    async def test_status(self, service: GridService, subscriber: Subscriber, workdir: str) -> None:
        await service.create_session("api", workdir)
        assert service.status() == {"status": "ok", "clients": 1, "sessions": 1}


class TestHookIngress:
    """Tests for hook payload handling."""

    @pytest.mark.asyncio
    async def test_garbage_never_raises(self, service: GridService, subscriber: Subscriber) -> None:
        for payload in (None, "text", [1], {"hook_event_name": "Stop"}, {"session_id": 5}):
            await service.ingest_hook(payload)
        raw = [m for m in subscriber.of_type("event") if m["kind"] == "raw"]
        assert len(raw) == 5

    @pytest.mark.asyncio
    async def test_unknown_hook_pulses_known_session(
        self, service: GridService, subscriber: Subscriber, clock, workdir: str
    ) -> None:
        session = await service.create_session("api", workdir)
        service.registry.link_external_id("ext-1", session.id)

        await service.ingest_hook(hook("PreCompact"))
        await settle(service, clock)

        assert [m["kind"] for m in subscriber.events(session.id)] == ["pulse"]

    @pytest.mark.asyncio
    async def test_observed_session_appears(self, service: GridService, subscriber: Subscriber) -> None:
        await service.ingest_hook(hook("UserPromptSubmit", session_id="0123456789ab"))
        snapshot = subscriber.of_type("sessions")[-1]["sessions"]
        assert [(s["id"], s["observed"], s["state"]) for s in snapshot] == [("01234567", True, "working")]


class TestPermissionPrompts:
    """Tests for watcher integration."""

    @pytest.mark.asyncio
    async def test_prompt_surfaced_once(
        self, service: GridService, controller, subscriber: Subscriber, workdir: str
    ) -> None:
        session = await service.create_session("api", workdir)
        controller.set_output(session.process_name, PROMPT_SCREEN)

        await service.watcher.poll_once()
        await service.watcher.poll_once()

        prompts = subscriber.of_type("permission-prompt")
        assert len(prompts) == 1
        assert prompts[0]["session_id"] == session.id
        assert [o["number"] for o in prompts[0]["options"]] == ["1", "2"]
        assert session.state is SessionState.WAITING

    @pytest.mark.asyncio
    async def test_answer_clears_waiting(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        controller.set_output(session.process_name, PROMPT_SCREEN)
        await service.watcher.poll_once()

        await service.answer_permission(session.id, "1")

        assert controller.keys == [(session.process_name, "1")]
        assert session.state is SessionState.WORKING
        assert not session.pending_prompts
        assert service.watcher.signature_for(session.id) is None

    @pytest.mark.asyncio
    async def test_answered_in_terminal_publishes_working(
        self, service: GridService, controller, subscriber: Subscriber, clock, workdir: str
    ) -> None:
        session = await service.create_session("api", workdir)
        controller.set_output(session.process_name, PROMPT_SCREEN)
        await service.watcher.poll_once()
        await settle(service, clock)

        controller.set_output(session.process_name, "running npm test\n")
        await service.watcher.poll_once()
        await settle(service, clock)

        assert session.state is SessionState.WORKING
        last = subscriber.events(session.id)[-1]
        assert (last["kind"], last["state"]) == ("state", "working")
        assert subscriber.of_type("sessions")[-1]["sessions"][0]["state"] == "working"

    @pytest.mark.asyncio
    async def test_invalid_keys_rejected(self, service: GridService, controller, workdir: str) -> None:
        session = await service.create_session("api", workdir)
        with pytest.raises(ValidationError):
            await service.answer_permission(session.id, "1; rm -rf /")
        assert controller.keys == []


class TestStartStop:
    """Tests for background task management."""

    @pytest.mark.asyncio
    async def test_start_loads_and_reconciles(self, config: Config, controller, workdir: str) -> None:
        first = GridService(config, controller=controller)
        session = await first.create_session("api", workdir)

        second = GridService(config, controller=controller)
        await second.start()
        try:
            assert second.running
            assert second.registry.require(session.id).state is SessionState.IDLE
        finally:
            await second.stop()
        assert not second.running
