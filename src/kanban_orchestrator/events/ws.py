"""WebSocket fan-out of orchestrator events, plus lifecycle commands.

Protocol (client -> server)::

    {"action": "subscribe", "channels": ["tasks", "sessions"], "task_ids": ["task-1"]}
    {"action": "unsubscribe", "channels": ["sessions"]}
    {"action": "ping"}
    {"action": "request_execution", "task_id": "task-1", "expected_status": "draft"}
    {"action": "kill_session", "session_id": "session-1"}

Protocol (server -> client)::

    {"channel": "sessions", "type": "session-progress", "task_id": ..., "session_id": ..., "payload": {...}, "seq": 7}
    {"channel": "system", "type": "command-result", "payload": {"action": ..., "ok": true, "result": {...}}}
    {"channel": "system", "type": "command-error", "payload": {"action": ..., "message": ..., "error_type": ...}}

A client with `task_ids` only receives events for those tasks (system
messages always pass). The hub only forwards; clients that miss messages
re-fetch state. Commands run on the default executor so a slow spawn never
blocks the event loop; the reply goes only to the client that sent it.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from ..errors import OrchestratorError
from .bus import Event, EventBus

CHANNELS = {"tasks", "sessions", "plans", "system"}

_CHANNEL_BY_PREFIX = {"task": "tasks", "session": "sessions", "plan": "plans"}

CommandHandler = Callable[[dict[str, Any]], Any]


def channel_for(event_type: str) -> str:
    return _CHANNEL_BY_PREFIX.get(event_type.split("-", 1)[0], "system")


@dataclass
class _Subscriber:
    ws: WebSocket
    channels: set[str] = field(default_factory=set)
    task_ids: set[str] = field(default_factory=set)

    def wants(self, message: dict[str, Any]) -> bool:
        channel = message.get("channel")
        if channel == "system":
            return True
        if channel not in self.channels:
            return False
        return not self.task_ids or message.get("task_id") in self.task_ids

    def state(self) -> dict[str, Any]:
        return {"channels": sorted(self.channels), "task_ids": sorted(self.task_ids)}


def _system(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"channel": "system", "type": event_type, "payload": payload}


def _jsonable(result: Any) -> Any:
    to_dict = getattr(result, "to_dict", None)
    return to_dict() if callable(to_dict) else result


class WebSocketHub:
    def __init__(self, commands: Optional[dict[str, CommandHandler]] = None) -> None:
        self._subscribers: dict[int, _Subscriber] = {}
        self._commands: dict[str, CommandHandler] = dict(commands or {})
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Forward every bus event to connected clients; returns the unsubscribe hook."""
        return bus.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        self.publish_sync({"channel": channel_for(event.type), **event.to_dict()})

    def _apply(self, sub: _Subscriber, message: dict[str, Any]) -> dict[str, Any]:
        action = message.get("action")
        channels = {str(c) for c in message.get("channels") or []}
        task_ids = {str(t).strip() for t in message.get("task_ids") or [] if str(t).strip()}
        if action == "subscribe":
            sub.channels |= channels & CHANNELS
            sub.task_ids |= task_ids
            return _system("subscribed", sub.state())
        if action == "unsubscribe":
            sub.channels -= channels
            sub.task_ids -= task_ids
            return _system("unsubscribed", sub.state())
        if action == "ping":
            return _system("pong", {})
        return _system("error", {"message": f"Unknown action '{action}'"})

    async def _run_command(self, action: str, message: dict[str, Any]) -> dict[str, Any]:
        handler = self._commands[action]
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, functools.partial(handler, message))
        except OrchestratorError as exc:
            logger.info("WS command {} refused: {}", action, exc)
            return _system(
                "command-error",
                {"action": action, "message": str(exc), "error_type": exc.error_type},
            )
        except ValueError as exc:
            return _system(
                "command-error",
                {"action": action, "message": str(exc), "error_type": "invalid_request"},
            )
        except Exception as exc:
            logger.exception("WS command {} failed", action)
            return _system(
                "command-error",
                {"action": action, "message": str(exc), "error_type": "internal_error"},
            )
        return _system("command-result", {"action": action, "ok": True, "result": _jsonable(result)})

    async def handle_connection(self, websocket: WebSocket) -> None:
        # Supervisor threads publish through this loop.
        self.attach_loop(asyncio.get_running_loop())
        await websocket.accept()
        sub = _Subscriber(ws=websocket)
        key = id(websocket)
        self._subscribers[key] = sub
        logger.debug("WS client connected (total={})", self.client_count)
        try:
            await websocket.send_json(
                _system("connected", {"channels": sorted(CHANNELS), "commands": sorted(self._commands)})
            )
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json(_system("error", {"message": "Invalid JSON"}))
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json(_system("error", {"message": "Expected an object"}))
                    continue
                action = message.get("action")
                if isinstance(action, str) and action in self._commands:
                    reply = await self._run_command(action, message)
                else:
                    reply = self._apply(sub, message)
                await websocket.send_text(json.dumps(reply, default=str))
        except WebSocketDisconnect:
            pass
        finally:
            self._subscribers.pop(key, None)
            logger.debug("WS client disconnected (total={})", self.client_count)

    async def publish(self, message: dict[str, Any]) -> None:
        data = json.dumps(message, default=str)
        dead: list[int] = []
        for key, sub in list(self._subscribers.items()):
            if not sub.wants(message):
                continue
            try:
                await sub.ws.send_text(data)
            except Exception:
                logger.debug("WS send failed; dropping client")
                dead.append(key)
        for key in dead:
            self._subscribers.pop(key, None)

    def publish_sync(self, message: dict[str, Any]) -> None:
        """Schedule `publish` from any thread onto the server loop."""
        with self._lock:
            loop = self._loop
        if loop is not None and loop.is_running():
            asyncio.run_coroutine_threadsafe(self.publish(message), loop)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No server loop yet; nobody can be connected.
            return
        self.attach_loop(loop)
        loop.create_task(self.publish(message))
