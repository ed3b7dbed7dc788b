"""Subscriber fan-out, REST routes and the web server.

Example:
    from agentgrid.hub import GridServer
    from agentgrid.service import GridService

    await GridServer(GridService(config)).run()
"""

from agentgrid.hub.routes import create_app
from agentgrid.hub.server import GridServer
from agentgrid.hub.websocket import BroadcastHub, CommandHandler

__all__ = [
    "BroadcastHub",
    "CommandHandler",
    "GridServer",
    "create_app",
]
