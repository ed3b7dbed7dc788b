"""ProcessController protocol: the only seam that touches the external process."""

from __future__ import annotations

from typing import Protocol


class ProcessController(Protocol):
    """Request/response access to terminal-multiplexed agent processes.

    Implementations:
    - TmuxController: real tmux sessions driven through argument-vector calls
    - FakeController (tests): in-memory panes
    """

    async def create(self, name: str, workdir: str, continue_session: bool = False) -> str:
        """Spawn a detached shell in ``workdir`` and start the agent in it.

        Returns the validated process name.
        """
        ...

    async def inject(self, name: str, text: str) -> None:
        """Deliver arbitrary text followed by Enter without shell interpretation."""
        ...

    async def send_keys(self, name: str, keys: str) -> None:
        """Send a short trusted keystroke token (menu number, y/n)."""
        ...

    async def cancel(self, name: str) -> None:
        """Send an interrupt (Ctrl+C)."""
        ...

    async def capture(self, name: str, lines: int = 50) -> str:
        """Return the last ``lines`` rendered lines of the pane."""
        ...

    async def kill(self, name: str) -> bool:
        """Terminate the process. Returns False if it was already gone."""
        ...

    async def list(self) -> list[str]:
        """Names of all live processes. No server running means an empty list."""
        ...

    async def exists(self, name: str) -> bool:
        ...
