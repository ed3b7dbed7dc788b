"""tmux-backed process controller.

All tmux calls go through an argument vector (``asyncio.create_subprocess_exec``),
never a shell-interpreted command line. Free text reaches a pane only through
the temp-file + paste-buffer protocol in ``TmuxController.inject``.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import secrets
import shlex
import tempfile
import time
from pathlib import Path

from agentgrid.config.schema import AgentConfig, ProcessConfig
from agentgrid.errors import (
    AlreadyExistsError,
    DirectoryInvalidError,
    NameInvalidError,
    NotFoundError,
    ProcessError,
    ProcessTimeoutError,
    ValidationError,
)
from agentgrid.logging import TRACE, get_logger
from agentgrid.process.result import CommandResult

log = get_logger("process")

PROCESS_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_NAME_LENGTH = 64
KEYS_RE = re.compile(r"^[A-Za-z0-9-]{1,16}$")

# stderr fragments that mean "no tmux server", which list() reports as empty
_NO_SERVER_MARKERS = (
    "no server running",
    "no sessions",
    "no such file or directory",
    "connection refused",
    "error connecting",
)


def validate_process_name(name: object) -> str:
    """Check a process name against the tmux-safe charset."""
    if not name or not isinstance(name, str):
        raise NameInvalidError("Invalid process name")
    if not PROCESS_NAME_RE.match(name):
        raise NameInvalidError("Process name contains invalid characters")
    if len(name) > MAX_NAME_LENGTH:
        raise NameInvalidError("Process name too long")
    return name


def validate_directory(path: object) -> str:
    """Resolve a working directory, rejecting traversal and non-directories.

    Returns:
        The absolute resolved path.
    """
    if not path or not isinstance(path, str):
        raise DirectoryInvalidError("Invalid directory path")
    if ".." in path:
        raise DirectoryInvalidError("Directory traversal not allowed")

    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise DirectoryInvalidError("Directory does not exist")
    if not resolved.is_dir():
        raise DirectoryInvalidError("Path is not a directory")
    return str(resolved)


class TmuxController:
    """Drives agent processes living in detached tmux sessions.

    Each managed session maps to one tmux session whose first pane runs a bare
    shell, into which the agent command is injected once the shell settles.
    """

    def __init__(
        self,
        config: ProcessConfig | None = None,
        agent: AgentConfig | None = None,
        temp_dir: str | None = None,
    ) -> None:
        self._config = config or ProcessConfig()
        self._agent = agent or AgentConfig()
        self._temp_dir = temp_dir or tempfile.gettempdir()

    async def _run(self, *args: str) -> CommandResult:
        """Run one tmux command with the configured time bound."""
        start_time = time.perf_counter()
        argv = [self._config.tmux_bin, *args]

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProcessError(f"tmux not found: {self._config.tmux_bin}") from e
        except OSError as e:
            raise ProcessError(f"Failed to start tmux: {e}") from e

        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=self._config.timeout
            )
        except asyncio.TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
                await process.wait()
            raise ProcessTimeoutError(
                f"tmux {args[0]} timed out after {self._config.timeout}s"
            ) from e

        result = CommandResult(
            args=list(args),
            exit_code=process.returncode,
            stdout=stdout_data.decode("utf-8", errors="replace"),
            stderr=stderr_data.decode("utf-8", errors="replace"),
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        log.log(TRACE, "tmux %s -> %r (%.1fms)", shlex.join(args), result, result.duration_ms)
        return result

    async def _tmux(self, *args: str) -> str:
        """Run tmux and return trimmed stdout, raising ProcessError on failure."""
        result = await self._run(*args)
        if not result.success:
            raise ProcessError(result.error_text)
        return result.stdout.strip()

    async def _require(self, name: object) -> str:
        valid = validate_process_name(name)
        if not await self.exists(valid):
            raise NotFoundError(f"Process '{valid}' not found")
        return valid

    async def list(self) -> list[str]:
        try:
            output = await self._tmux("list-sessions", "-F", "#{session_name}")
        except ProcessTimeoutError:
            raise
        except ProcessError as e:
            message = e.message.lower()
            if any(marker in message for marker in _NO_SERVER_MARKERS):
                return []
            raise
        return [line for line in output.splitlines() if line]

    async def exists(self, name: str) -> bool:
        return name in await self.list()

    def agent_command(self, continue_session: bool = False) -> str:
        """Startup line for the agent: first existing search path, else PATH lookup."""
        binary = self._agent.command
        for candidate in self._agent.search_paths:
            if os.path.exists(candidate):
                binary = candidate
                break

        argv = [binary, *self._agent.args]
        if continue_session and self._agent.continue_flag:
            argv.append(self._agent.continue_flag)
        return shlex.join(argv)

    async def create(self, name: str, workdir: str, continue_session: bool = False) -> str:
        valid_name = validate_process_name(name)
        valid_dir = validate_directory(workdir)

        if await self.exists(valid_name):
            raise AlreadyExistsError(f"Process '{valid_name}' already exists")

        await self._tmux(
            "new-session",
            "-d",
            "-s", valid_name,
            "-c", valid_dir,
            "-x", str(self._config.width),
            "-y", str(self._config.height),
            self._config.shell,
        )
        log.info("Spawned process %s in %s", valid_name, valid_dir)

        await asyncio.sleep(self._config.settle_delay)
        await self.inject(valid_name, self.agent_command(continue_session))
        return valid_name

    async def inject(self, name: str, text: str) -> None:
        """Paste ``text`` into the pane and confirm it with Enter.

        The text is written to a private temp file, loaded into a named paste
        buffer, and pasted; it never appears on any command line.
        """
        valid_name = await self._require(name)
        token = secrets.token_hex(8)
        buffer_name = f"{self._config.name_prefix}-{token}"
        temp_path = Path(self._temp_dir) / f"{self._config.name_prefix}-prompt-{token}.txt"
        target = f"{valid_name}:0.0"

        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)

            await self._tmux("load-buffer", "-b", buffer_name, str(temp_path))
            await self._tmux("paste-buffer", "-d", "-b", buffer_name, "-t", target)
            await asyncio.sleep(self._config.confirm_delay)
            await self._tmux("send-keys", "-t", target, "Enter")
        except OSError as e:
            raise ProcessError(f"Failed to stage text for {valid_name}: {e}") from e
        finally:
            with contextlib.suppress(OSError):
                temp_path.unlink()

        log.debug("Injected %d chars into %s", len(text), valid_name)

    async def send_keys(self, name: str, keys: str) -> None:
        if not isinstance(keys, str) or not KEYS_RE.match(keys):
            raise ValidationError("Keys must be a short alphanumeric token")
        valid_name = await self._require(name)
        await self._tmux("send-keys", "-t", valid_name, keys)

    async def cancel(self, name: str) -> None:
        valid_name = await self._require(name)
        await self._tmux("send-keys", "-t", valid_name, "C-c")

    async def capture(self, name: str, lines: int = 50) -> str:
        valid_name = await self._require(name)
        return await self._tmux(
            "capture-pane",
            "-t", valid_name,
            "-p",
            "-S", f"-{max(1, int(lines))}",
        )

    async def kill(self, name: str) -> bool:
        valid_name = validate_process_name(name)
        if not await self.exists(valid_name):
            return False
        await self._tmux("kill-session", "-t", valid_name)
        log.info("Killed process %s", valid_name)
        return True
