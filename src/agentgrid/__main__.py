"""Entry point for running the AgentGrid server.

Usage:
    python -m agentgrid
    python -m agentgrid --config ./agentgrid.yaml --port 4000 -vv

Agent hooks should POST their JSON payloads to ``/api/events``; renderers
connect to ``/ws``.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys

from agentgrid.logging import get_logger, setup_logging

log = get_logger()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="agentgrid", description="AgentGrid session server")
    parser.add_argument("--config", help="Explicit config file (merged over system and user config)")
    parser.add_argument("--host", help="Listen address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument(
        "-v", "--verbose", action="count", default=None, help="Increase log verbosity (repeatable)"
    )
    return parser.parse_args(argv)


async def _main(server) -> None:
    try:
        await server.run()
    except asyncio.CancelledError:
        log.info("Cancelled, shutting down...")


def main(argv: list[str] | None = None) -> None:
    """Run the AgentGrid server."""
    from agentgrid.config import load_config
    from agentgrid.hub import GridServer
    from agentgrid.service import GridService

    args = _parse_args(argv)

    # Load config before logging so we can use config.logging settings
    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.verbose is not None:
        config.logging.verbose = args.verbose

    setup_logging(config.logging)
    log.info(
        "Starting AgentGrid (tmux=%s, agent=%s, data=%s)",
        config.process.tmux_bin,
        config.agent.command,
        config.storage.data_dir or "default",
    )

    server = GridServer(GridService(config), config.server)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_main(server))
    log.info("Exiting...")


if __name__ == "__main__":
    main(sys.argv[1:])
