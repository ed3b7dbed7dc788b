"""HTTP/WebSocket server lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any

import uvicorn

from agentgrid.hub.routes import create_app
from agentgrid.logging import get_logger

if TYPE_CHECKING:
    from agentgrid.config.schema import ServerConfig
    from agentgrid.service import GridService

log = get_logger("server")


class GridServer:
    """Runs the service's background loops and a uvicorn server side by side."""

    def __init__(self, service: GridService, config: ServerConfig | None = None) -> None:
        self.service = service
        self.config = config or service.config.server
        self.app = create_app(service)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._start_time: float | None = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running(),
            "host": self.config.host,
            "port": self.config.port,
            "uptime": time.time() - self._start_time if self._start_time else 0,
            "connections": self.service.hub.connection_count,
        }

    async def start(self) -> None:
        """Start the service loops and the web server in a background task."""
        if self.is_running():
            raise RuntimeError(f"Server already running on port {self.config.port}")

        await self.service.start()

        uv_config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(uv_config)
        self._task = asyncio.create_task(self._server.serve())
        self._start_time = time.time()

        log.info("AgentGrid listening on http://%s:%d", self.config.host, self.config.port)

    async def stop(self) -> None:
        """Stop the web server, then the service loops."""
        if self._task is None:
            return

        if self._server is not None:
            self._server.should_exit = True
        await self.service.stop()

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

        log.info("AgentGrid stopped (was on port %d)", self.config.port)
        self._task = None
        self._server = None
        self._start_time = None

    async def run(self) -> None:
        """Serve until the server exits or the task is cancelled."""
        await self.start()
        try:
            assert self._task is not None
            await self._task
        finally:
            await self.stop()
