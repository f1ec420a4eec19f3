"""
Realtime (WebSocket) lifecycle adapter (THIN WRAPPER).

This is ONLY responsible for lifecycle (start/stop).
Socket handling lives in api/realtime/hub.py
"""
from typing import Any, Dict

from fastapi import FastAPI

from ...realtime.hub import ConnectionHub
from ..base import BaseDependencyAdapter


class RealtimeAdapter(BaseDependencyAdapter):
    """
    Lifecycle wrapper for the WebSocket hub.

    - This adapter: WHEN to accept/close
    - ConnectionHub: HOW to serve sockets
    """

    name = "realtime"

    def __init__(self, hub: ConnectionHub, app: FastAPI, **kwargs):
        super().__init__(**kwargs)
        self.hub = hub
        self.app = app

    async def _open(self) -> None:
        self.hub.initialize(self.app)

    async def _close(self) -> None:
        if self.hub.accepting or self.hub.connected_client_count:
            await self.hub.close_all()

    @property
    def connected_client_count(self) -> int:
        return self.hub.connected_client_count

    def metadata(self) -> Dict[str, Any]:
        return {"path": self.hub.path, **self.hub.stats()}
