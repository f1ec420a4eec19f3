"""MongoDB lifecycle adapter."""
import asyncio
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from pymongo import AsyncMongoClient, monitoring

from ....core.config import mask_url
from ....core.exceptions import ConfigurationError
from ..base import BaseDependencyAdapter, DependencyState


class TopologyWatcher(monitoring.TopologyListener):
    """
    Forwards primary availability changes to the adapter.

    pymongo may publish from its monitor threads, so every change hops
    onto the adapter's event loop.
    """

    def __init__(self, adapter: "DatabaseAdapter", loop: asyncio.AbstractEventLoop):
        self._adapter = adapter
        self._loop = loop

    def opened(self, event) -> None:
        pass

    def closed(self, event) -> None:
        pass

    def description_changed(self, event) -> None:
        writable = event.new_description.has_writable_server()
        if writable == event.previous_description.has_writable_server():
            return
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._adapter.writable_changed, writable)


class DatabaseAdapter(BaseDependencyAdapter):
    """
    Manages the MongoDB client lifecycle.

    Responsibilities:
    - Create the client and confirm the server answers ``ping``
    - Report connection status without touching the network
    - Report a lost primary as a drop, and the driver's recovery
    - Close the client on shutdown
    """

    name = "database"

    def __init__(
        self,
        url: str,
        max_pool_size: int = 10,
        socket_timeout: float = 45.0,
        **kwargs,
    ):
        if not url:
            raise ConfigurationError("DATABASE_URL", "a MongoDB connection string is required")
        super().__init__(**kwargs)
        self.url = url
        self.max_pool_size = max_pool_size
        self.socket_timeout = socket_timeout
        self.client: Optional[AsyncMongoClient] = None

        parts = urlsplit(url)
        self._host = parts.hostname or "localhost"
        self._port = parts.port or 27017
        self._db_name = parts.path.lstrip("/") or None

    async def _open(self) -> None:
        await self._close()
        self._logger.info("connecting_to_database", url=mask_url(self.url))
        self.client = AsyncMongoClient(
            self.url,
            maxPoolSize=self.max_pool_size,
            serverSelectionTimeoutMS=int(self.connect_timeout * 1000),
            socketTimeoutMS=int(self.socket_timeout * 1000),
            retryWrites=True,
            event_listeners=[TopologyWatcher(self, asyncio.get_running_loop())],
        )
        await self.client.admin.command("ping")

    async def _close(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.close()

    def writable_changed(self, writable: bool) -> None:
        """Topology gained or lost a writable server. Runs on the event loop."""
        if self.client is None:
            # torn down; late monitor events are stale
            return
        if not writable and self.state == DependencyState.CONNECTED:
            self.mark_dropped("no writable server in topology")
        elif writable and self.state == DependencyState.DISCONNECTED:
            # the driver reconnected on its own
            self._transition(DependencyState.CONNECTING)
            self._transition(DependencyState.CONNECTED)
            self._logger.info("dependency_reconnected", dependency=self.name)

    @property
    def database(self):
        """Default database handle, or None while disconnected."""
        if self.client is None or self.state != DependencyState.CONNECTED or not self._db_name:
            return None
        return self.client[self._db_name]

    def connection_status(self) -> Dict[str, Any]:
        return {
            "is_connected": self.state == DependencyState.CONNECTED,
            "state": self.state.value,
            "host": self._host,
            "port": self._port,
            "name": self._db_name,
        }

    def metadata(self) -> Dict[str, Any]:
        return {**self.connection_status(), "max_pool_size": self.max_pool_size}
