"""FastAPI routes for the REST command surface, hook ingress and WebSocket."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agentgrid import __version__
from agentgrid.errors import AgentGridError
from agentgrid.logging import get_logger

if TYPE_CHECKING:
    from agentgrid.service import GridService

log = get_logger("routes")


class CreateSessionRequest(BaseModel):
    name: str | None = None
    directory: str | None = None
    continue_session: bool = Field(default=False, alias="continueSession")

    model_config = {"populate_by_name": True}


class PromptRequest(BaseModel):
    prompt: str


class RenameRequest(BaseModel):
    name: str | None = None


class LinkRequest(BaseModel):
    external_id: str = Field(alias="externalId")

    model_config = {"populate_by_name": True}


class PermissionRequest(BaseModel):
    response: str


def create_app(service: GridService) -> FastAPI:
    """Create and configure the FastAPI application around a GridService."""
    app = FastAPI(
        title="AgentGrid",
        description="Session lifecycle and event orchestration for coding agents",
        version=__version__,
    )
    app.state.service = service

    @app.exception_handler(AgentGridError)
    async def agentgrid_error_handler(request: Request, exc: AgentGridError) -> JSONResponse:
        if exc.status_code >= 500:
            log.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    _register_routes(app, service)
    return app


def _register_routes(app: FastAPI, service: GridService) -> None:
    """Register all API routes."""

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        return service.status()

    @app.get("/api/sessions")
    async def api_list_sessions() -> dict[str, Any]:
        return {"ok": True, "sessions": service.list_sessions()}

    @app.post("/api/sessions")
    async def api_create_session(body: CreateSessionRequest) -> dict[str, Any]:
        session = await service.create_session(body.name, body.directory, body.continue_session)
        return {"ok": True, "session": session.to_dict()}

    @app.get("/api/sessions/{session_id}")
    async def api_get_session(session_id: str) -> dict[str, Any]:
        return {"ok": True, "session": service.get_session(session_id).to_dict()}

    @app.patch("/api/sessions/{session_id}")
    async def api_rename_session(session_id: str, body: RenameRequest) -> dict[str, Any]:
        if body.name:
            session = await service.rename_session(session_id, body.name)
        else:
            session = service.registry.require(session_id)
        return {"ok": True, "session": session.to_dict()}

    @app.delete("/api/sessions/{session_id}")
    async def api_delete_session(session_id: str) -> dict[str, Any]:
        await service.delete_session(session_id)
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/prompt")
    async def api_send_prompt(session_id: str, body: PromptRequest) -> dict[str, Any]:
        await service.send_prompt(session_id, body.prompt)
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/cancel")
    async def api_cancel(session_id: str) -> dict[str, Any]:
        await service.cancel(session_id)
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/restart")
    async def api_restart(session_id: str) -> dict[str, Any]:
        session = await service.restart_session(session_id)
        return {"ok": True, "session": session.to_dict()}

    @app.post("/api/sessions/{session_id}/link")
    async def api_link(session_id: str, body: LinkRequest) -> dict[str, Any]:
        await service.link_session(session_id, body.external_id)
        return {"ok": True}

    @app.post("/api/sessions/{session_id}/permission")
    async def api_permission(session_id: str, body: PermissionRequest) -> dict[str, Any]:
        await service.answer_permission(session_id, body.response)
        return {"ok": True}

    @app.get("/api/sessions/{session_id}/output")
    async def api_output(session_id: str, lines: int = Query(default=100, ge=1, le=10000)) -> dict[str, Any]:
        output = await service.get_output(session_id, lines)
        return {"ok": True, "output": output}

    @app.post("/api/events")
    async def api_events(request: Request) -> dict[str, Any]:
        """Hook ingress. Always acknowledged, even when the body is unusable."""
        body = await request.body()
        try:
            payload: Any = json.loads(body) if body else None
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.debug("Hook payload is not JSON (%d bytes)", len(body))
            payload = body.decode("utf-8", errors="replace")
        await service.ingest_hook(payload)
        return {"ok": True}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Subscriber channel: init snapshot, then events out and commands in."""
        hub = service.hub
        await hub.connect(websocket)
        try:
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                await hub.handle_message(websocket, data)
        finally:
            await hub.disconnect(websocket)
