"""tmux invocation result dataclass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CommandResult:
    """Result of one tmux invocation.

    Attributes:
        args: Argument vector passed to tmux (without the binary).
        exit_code: Process exit code, or None if killed on timeout.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
        duration_ms: Wall time of the round trip in milliseconds.
    """

    args: list[str]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: float

    @property
    def success(self) -> bool:
        """True if tmux exited with code 0."""
        return self.exit_code == 0

    @property
    def error_text(self) -> str:
        return self.stderr.strip() or f"tmux exited with code {self.exit_code}"

    def __repr__(self) -> str:
        verb = self.args[0] if self.args else "?"
        if self.success:
            return f"<CommandResult {verb} ok>"
        return f"<CommandResult {verb} exit={self.exit_code}>"
