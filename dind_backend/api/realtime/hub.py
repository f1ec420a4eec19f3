"""
dind_backend/api/realtime/hub.py
In-process WebSocket hub.

Responsibilities:
- Mount the WebSocket route on the FastAPI app
- Track connected clients and rooms
- Relay room messages
- Close every socket on shutdown

Lifecycle (WHEN to accept/close) belongs to RealtimeAdapter.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set
from uuid import uuid4

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from ..metrics.registry import set_realtime_clients

logger = structlog.get_logger(__name__)

# RFC 6455 close codes
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionHub:
    """Connected clients and rooms for the realtime endpoint."""

    def __init__(self, path: str = "/ws"):
        self.path = path
        self._clients: Dict[str, WebSocket] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._accepting = False
        self._mounted: Set[int] = set()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def initialize(self, app: FastAPI) -> None:
        """Mount the route (once per app) and start accepting clients."""
        if id(app) not in self._mounted:
            app.add_api_websocket_route(self.path, self.endpoint, name="realtime")
            self._mounted.add(id(app))
        self._accepting = True
        logger.info("realtime_hub_initialized", path=self.path)

    async def close_all(self, code: int = CLOSE_GOING_AWAY) -> int:
        """Stop accepting and close every open socket. Returns how many were closed."""
        self._accepting = False
        clients = list(self._clients.items())
        for client_id, websocket in clients:
            try:
                await websocket.close(code=code)
            except Exception as e:
                # socket may already be gone
                logger.debug("realtime_close_failed", client_id=client_id, error=str(e))
            self._remove(client_id)
        logger.info("realtime_hub_closed", closed=len(clients))
        return len(clients)

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def connected_client_count(self) -> int:
        return len(self._clients)

    def stats(self) -> Dict[str, Any]:
        return {
            "connected_clients": len(self._clients),
            "active_rooms": len(self._rooms),
            "accepting": self._accepting,
        }

    # ========================================================================
    # Endpoint
    # ========================================================================

    async def endpoint(self, websocket: WebSocket) -> None:
        if not self._accepting:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return

        await websocket.accept()
        client_id = uuid4().hex
        self._clients[client_id] = websocket
        set_realtime_clients(len(self._clients))
        logger.info("realtime_client_connected", client_id=client_id, clients=len(self._clients))

        try:
            await websocket.send_json({"event": "connected", "client_id": client_id, "timestamp": _now()})
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"event": "error", "message": "Expected a JSON object"})
                    continue
                await self._dispatch(client_id, websocket, message)
        except WebSocketDisconnect as e:
            logger.info("realtime_client_disconnected", client_id=client_id, code=e.code)
        finally:
            self._remove(client_id)

    async def _dispatch(self, client_id: str, websocket: WebSocket, message: Dict[str, Any]) -> None:
        event = message.get("event")
        room = message.get("room")

        if event == "ping":
            await websocket.send_json({"event": "pong", "timestamp": _now()})

        elif event == "join-room":
            if not isinstance(room, str) or not room:
                await websocket.send_json({"event": "error", "message": "Invalid room name"})
                return
            self._rooms.setdefault(room, set()).add(client_id)
            await websocket.send_json({
                "event": "joined-room",
                "room": room,
                "members": len(self._rooms[room]),
                "timestamp": _now(),
            })

        elif event == "leave-room":
            if not room:
                await websocket.send_json({"event": "error", "message": "Room name required"})
                return
            self._leave(client_id, room)
            await websocket.send_json({"event": "left-room", "room": room, "timestamp": _now()})

        elif event == "send-message":
            text = message.get("message")
            if not room or not text:
                await websocket.send_json({"event": "error", "message": "Room and message are required"})
                return
            if client_id not in self._rooms.get(room, ()):
                await websocket.send_json({"event": "error", "message": "You are not in this room"})
                return
            await self.send_to_room(room, {
                "event": "new-message",
                "id": uuid4().hex,
                "room": room,
                "message": text,
                "from": client_id,
                "timestamp": _now(),
            })

        elif event == "get-stats":
            await websocket.send_json({"event": "stats", **self.stats()})

        else:
            await websocket.send_json({"event": "error", "message": f"Unknown event: {event!r}"})

    # ========================================================================
    # Fan-out
    # ========================================================================

    async def send_to_room(self, room: str, payload: Dict[str, Any]) -> int:
        sent = 0
        for member in list(self._rooms.get(room, ())):
            if await self._send(member, payload):
                sent += 1
        return sent

    async def _send(self, client_id: str, payload: Dict[str, Any]) -> bool:
        websocket: Optional[WebSocket] = self._clients.get(client_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(payload)
        except Exception as e:
            logger.warning("realtime_send_failed", client_id=client_id, error=str(e))
            self._remove(client_id)
            return False
        return True

    def _leave(self, client_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(client_id)
        if not members:
            del self._rooms[room]

    def _remove(self, client_id: str) -> None:
        if self._clients.pop(client_id, None) is None:
            return
        for room in list(self._rooms):
            self._leave(client_id, room)
        set_realtime_clients(len(self._clients))
