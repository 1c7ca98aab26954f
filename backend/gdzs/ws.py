from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from .errors import SessionNotFoundError
from .schemas import RegistryStateRead, TimerExpired, WorkSession, WorkSessionRead
from .services.collaborators import utcnow
from .services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

ws_router = APIRouter()


class WebSocketConnectionManager:
    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)

    async def count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def broadcast(self, payload: dict[str, Any]) -> None:
        async with self._lock:
            recipients = list(self._connections)

        stale_sockets: list[WebSocket] = []
        for websocket in recipients:
            try:
                await websocket.send_json(payload)
            except Exception:
                stale_sockets.append(websocket)

        for stale_websocket in stale_sockets:
            await self.disconnect(stale_websocket)


ws_connections = WebSocketConnectionManager()


def build_registry_state(
    registry: SessionRegistry, sessions: list[WorkSession] | None = None
) -> RegistryStateRead:
    if sessions is None:
        sessions = registry.snapshot()
    return RegistryStateRead(
        current_session_id=registry.current_id,
        suspended=registry.is_suspended,
        sessions=[WorkSessionRead.from_session(session) for session in sessions],
    )


def registry_state_message(
    registry: SessionRegistry, sessions: list[WorkSession] | None = None
) -> dict[str, Any]:
    return {
        "type": "registry_state",
        "serverTime": utcnow().isoformat(),
        "state": build_registry_state(registry, sessions).model_dump(mode="json"),
    }


def timer_expired_message(event: TimerExpired) -> dict[str, Any]:
    return {
        "type": "timer_expired",
        "sessionId": str(event.session_id),
        "kind": event.kind.value,
        "expiredAt": event.expired_at.isoformat(),
    }


class RegistryBroadcaster:
    """Forwards registry listener callbacks, fired from any thread, to the websocket feed."""

    def __init__(self, registry: SessionRegistry, manager: WebSocketConnectionManager) -> None:
        self._registry = registry
        self._manager = manager
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._registry.on_change(self.on_change)
        self._registry.on_timer_expired(self.on_timer_expired)

    def on_change(self, sessions: list[WorkSession]) -> None:
        self._submit(registry_state_message(self._registry, sessions))

    def on_timer_expired(self, event: TimerExpired) -> None:
        self._submit(timer_expired_message(event))

    def _submit(self, payload: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self._manager.broadcast(payload), loop)
        future.add_done_callback(self._on_done)

    @staticmethod
    def _on_done(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Websocket broadcast failed: %s", exc)


async def safe_send_json(websocket: WebSocket, payload: dict[str, Any]) -> None:
    try:
        await websocket.send_json(payload)
    except Exception:
        return


def parse_uuid(raw_value: Any) -> UUID | None:
    if not isinstance(raw_value, str):
        return None
    try:
        return UUID(raw_value)
    except ValueError:
        return None


@ws_router.websocket("/api/ws")
async def realtime_ws_endpoint(websocket: WebSocket):
    await websocket.accept()
    registry: SessionRegistry = websocket.app.state.registry

    try:
        await ws_connections.connect(websocket)
        await websocket.send_json(registry_state_message(registry))

        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await safe_send_json(
                    websocket,
                    {"type": "error", "detail": "Message must be an object", "code": "BAD_MESSAGE"},
                )
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await safe_send_json(websocket, {"type": "pong", "serverTime": utcnow().isoformat()})
            elif message_type == "get_state":
                await safe_send_json(websocket, registry_state_message(registry))
            elif message_type == "select_session":
                session_id = parse_uuid(message.get("sessionId"))
                if session_id is None:
                    await safe_send_json(
                        websocket,
                        {"type": "error", "detail": "sessionId is required", "code": "BAD_MESSAGE"},
                    )
                    continue
                try:
                    registry.switch_current(session_id)
                except SessionNotFoundError as exc:
                    await safe_send_json(
                        websocket,
                        {"type": "error", "detail": str(exc), "code": "SESSION_NOT_FOUND"},
                    )
            else:
                await safe_send_json(
                    websocket,
                    {
                        "type": "error",
                        "detail": f"Unknown message type: {message_type}",
                        "code": "UNKNOWN_MESSAGE",
                    },
                )
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Realtime websocket failed")
        await safe_send_json(
            websocket,
            {
                "type": "error",
                "detail": "Internal realtime server error",
                "code": "INTERNAL_ERROR",
            },
        )
        try:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except Exception:
            return
    finally:
        await ws_connections.disconnect(websocket)
