"""Serve orchestrator events and lifecycle commands over a WebSocket at ``/ws``.

There is no REST surface; board edits stay on the CLI.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import FastAPI, WebSocket

from .events.ws import CommandHandler, WebSocketHub
from .orchestrator import OrchestratorService, create_orchestrator


def _required(message: dict[str, Any], key: str) -> str:
    value = str(message.get(key) or "").strip()
    if not value:
        raise ValueError(f"'{key}' is required")
    return value


def _task_command(method: Callable[..., Any]) -> CommandHandler:
    def run(message: dict[str, Any]) -> Any:
        return method(_required(message, "task_id"), expected_status=message.get("expected_status"))

    return run


def build_commands(service: OrchestratorService) -> dict[str, CommandHandler]:
    """Lifecycle commands a WebSocket client may send as ``{"action": ...}``."""
    return {
        "request_planning": _task_command(service.request_planning),
        "regenerate_plan": _task_command(service.regenerate_plan),
        "approve_plan": _task_command(service.approve_plan),
        "request_execution": _task_command(service.request_execution),
        "kill_session": lambda message: service.kill_session(_required(message, "session_id")),
    }


def create_app(
    project_dir: Optional[Path] = None,
    *,
    orchestrator: Optional[OrchestratorService] = None,
) -> FastAPI:
    service = orchestrator or create_orchestrator(project_dir or Path.cwd())
    hub = WebSocketHub(commands=build_commands(service))

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        unsubscribe = hub.attach(service.bus)
        try:
            yield
        finally:
            unsubscribe()
            service.shutdown()

    app = FastAPI(title="kanban-orchestrator events", lifespan=lifespan)
    app.state.orchestrator = service
    app.state.hub = hub

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await hub.handle_connection(websocket)

    return app
