"""Permission prompt detection by polling pane output.

Agents do not announce interactive confirmation prompts, so the watcher
captures the tail of each quiescent session's pane once per tick and runs
``detect_prompt`` over it. A prompt is reported once per distinct signature
(a hash of the trailing lines); the signature is forgotten as soon as the
prompt disappears or the session goes offline. A prompt that disappears
without being answered through us also releases its pending prompt id.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from agentgrid.config.schema import WatcherConfig
from agentgrid.errors import AgentGridError
from agentgrid.logging import get_logger
from agentgrid.process.protocol import ProcessController
from agentgrid.session.models import Session, SessionState
from agentgrid.session.registry import SessionRegistry

log = get_logger("watching")

PROMPT_PATTERNS = (
    re.compile(r"Do you want to proceed\?", re.IGNORECASE),
    re.compile(r"Allow this action\?", re.IGNORECASE),
    re.compile(r"Do you want to allow", re.IGNORECASE),
    re.compile(r"Approve this", re.IGNORECASE),
    re.compile(r"\[y/n\]", re.IGNORECASE),
    re.compile(r"\(y/n\)", re.IGNORECASE),
)

OPTION_RE = re.compile(r"^\s*(?:[❯›>]\s*)?(\d+)\.\s*(.+)$")  # optional selection cursor

WATCHED_STATES = (SessionState.IDLE, SessionState.WAITING)


@dataclass(frozen=True)
class PromptOption:
    number: str
    label: str

    def to_dict(self) -> dict[str, str]:
        return {"number": self.number, "label": self.label}


DEFAULT_OPTIONS = (PromptOption("y", "Yes"), PromptOption("n", "No"))


@dataclass(frozen=True)
class PromptSignal:
    """A detected prompt: what it says, how to answer it, and its identity."""

    text: str
    options: tuple[PromptOption, ...]
    signature: str

    @property
    def prompt_id(self) -> str:
        return f"prompt_{self.signature}"

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "options": [o.to_dict() for o in self.options]}


def _matches(text: str) -> bool:
    return any(pattern.search(text) for pattern in PROMPT_PATTERNS)


def extract_options(lines: list[str], option_lines: int = 15) -> tuple[PromptOption, ...]:
    """Numbered ``<n>. <label>`` choices from the trailing lines, else yes/no."""
    options = []
    for line in lines[-option_lines:]:
        match = OPTION_RE.match(line)
        if match:
            options.append(PromptOption(match.group(1), match.group(2).strip()))
    return tuple(options) or DEFAULT_OPTIONS


def extract_prompt_text(lines: list[str]) -> str:
    """Last matching line with up to three lines of context before it."""
    for i in range(len(lines) - 1, -1, -1):
        if _matches(lines[i].strip()):
            return "\n".join(lines[max(0, i - 3): i + 1]).strip()
    return "\n".join([line for line in lines if line.strip()][-5:])


def prompt_signature(lines: list[str], signature_lines: int = 10) -> str:
    tail = "\n".join(lines[-signature_lines:])
    return hashlib.sha1(tail.encode("utf-8")).hexdigest()[:16]


def detect_prompt(
    output: str,
    signature_lines: int = 10,
    option_lines: int = 15,
) -> PromptSignal | None:
    """Pure detection over captured pane text. No side effects."""
    if not output or not _matches(output):
        return None
    lines = output.split("\n")
    return PromptSignal(
        text=extract_prompt_text(lines),
        options=extract_options(lines, option_lines),
        signature=prompt_signature(lines, signature_lines),
    )


PromptCallback = Callable[[Session, PromptSignal], Awaitable[None]]
ClearedCallback = Callable[[Session, str], Awaitable[None]]


@dataclass
class PermissionWatcher:
    """Polls idle and waiting managed sessions for interactive prompts.

    Example:
        watcher = PermissionWatcher(registry, controller, on_prompt=service.on_prompt)
        await watcher.start()  # until stop()
    """

    registry: SessionRegistry
    controller: ProcessController
    on_prompt: PromptCallback
    config: WatcherConfig = field(default_factory=WatcherConfig)
    on_cleared: ClearedCallback | None = None
    _signatures: dict[str, str] = field(default_factory=dict, init=False)
    _prompt_ids: dict[str, str] = field(default_factory=dict, init=False)  # last reported
    _running: bool = field(default=False, init=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False)

    def forget(self, session_id: str) -> None:
        """Drop the remembered signature so the next sighting is a fresh prompt."""
        self._signatures.pop(session_id, None)
        self._prompt_ids.pop(session_id, None)

    def signature_for(self, session_id: str) -> str | None:
        return self._signatures.get(session_id)

    async def poll_once(self) -> list[tuple[str, PromptSignal]]:
        """One polling pass. Returns the prompts reported during this pass."""
        reported: list[tuple[str, PromptSignal]] = []

        for session in self.registry.list_managed():
            if session.offline:
                self.forget(session.id)
                continue
            if session.state not in WATCHED_STATES or not session.process_name:
                continue

            try:
                output = await self.controller.capture(session.process_name, self.config.capture_lines)
            except AgentGridError as e:
                log.debug("Capture failed for %s: %s", session.id, e)
                continue

            signal = detect_prompt(output, self.config.signature_lines, self.config.option_lines)
            if signal is None:
                await self._prompt_vanished(session)
                continue
            if self._signatures.get(session.id) == signal.signature:
                continue

            # The session may have been deleted while we were capturing
            if self.registry.get(session.id) is None:
                continue

            previous = self._prompt_ids.get(session.id)
            if previous is not None and previous != signal.prompt_id:
                self.registry.clear_prompt(session.id, previous)
            self.registry.enter_waiting(session.id, signal.prompt_id)
            self._signatures[session.id] = signal.signature
            self._prompt_ids[session.id] = signal.prompt_id
            log.info("Permission prompt detected for %s (%d options)", session.id, len(signal.options))
            reported.append((session.id, signal))

            try:
                await self.on_prompt(session, signal)
            except Exception:
                log.exception("Error in permission prompt callback for %s", session.id)

        return reported

    async def _prompt_vanished(self, session: Session) -> None:
        """The pane no longer shows a prompt: it was answered in the terminal."""
        prompt_id = self._prompt_ids.get(session.id)
        self.forget(session.id)
        if prompt_id is None or not self.registry.clear_prompt(session.id, prompt_id):
            return

        log.info("Permission prompt for %s went away, back to working", session.id)
        if self.on_cleared is not None:
            try:
                await self.on_cleared(session, prompt_id)
            except Exception:
                log.exception("Error in prompt cleared callback for %s", session.id)

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            log.warning("PermissionWatcher already running")
            return

        self._running = True
        self._task = asyncio.current_task()
        log.info("PermissionWatcher started (interval: %.1fs)", self.config.poll_interval)

        try:
            while self._running:
                try:
                    await self.poll_once()
                except Exception:
                    log.exception("Permission poll failed")
                await asyncio.sleep(self.config.poll_interval)
        except asyncio.CancelledError:
            log.info("PermissionWatcher cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        """Stop the polling loop."""
        self._running = False
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        log.info("PermissionWatcher stopped")

    def is_running(self) -> bool:
        return self._running
