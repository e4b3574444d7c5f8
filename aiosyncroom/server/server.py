"""Syncroom server owning all rooms and accepting client connections."""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from aiohttp import web
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from .connection import ClientConnection
from .membership import MembershipManager, RoomEvent
from .playback import PlaybackAuthority
from .relay import ChunkRelay
from .table import RoomTable

SERVICE_TYPE = "_syncroom._tcp.local."
DEFAULT_PATH = "/syncroom"
DEBUG_ROOMS_PATH = "/debug/rooms"

logger = logging.getLogger(__name__)


class SyncRoomEvent:
    """Base event type used by SyncRoomServer.add_event_listener()."""


@dataclass
class ClientConnectedEvent(SyncRoomEvent):
    """A new client connection was accepted."""

    connection_id: str


@dataclass
class ClientDisconnectedEvent(SyncRoomEvent):
    """A client connection was closed."""

    connection_id: str


EventCallback = Callable[[SyncRoomEvent | RoomEvent], Coroutine[None, None, None]]


def _guess_local_address() -> str:
    """Return the address of the interface used for outgoing traffic."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # UDP connect only selects a route, nothing is sent
            sock.connect(("10.255.255.255", 1))
            return str(sock.getsockname()[0])
        except OSError:
            return "127.0.0.1"


class SyncRoomServer:
    """
    Syncroom server hosting any number of independent rooms.

    The server owns a single RoomTable and the components operating on it. Create one
    instance per process (or per test); nothing is stored globally.
    """

    loop: asyncio.AbstractEventLoop
    _id: str
    _name: str
    _clock: Callable[[], int]
    _table: RoomTable
    _membership: MembershipManager
    _playback: PlaybackAuthority
    _relay: ChunkRelay
    _connections: set[ClientConnection]
    _event_cbs: list[EventCallback]
    _runner: web.AppRunner | None
    _zeroconf: AsyncZeroconf | None
    _service_info: AsyncServiceInfo | None

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        server_id: str,
        server_name: str,
        *,
        clock: Callable[[], int] | None = None,
        table: RoomTable | None = None,
    ) -> None:
        """
        Initialize a new syncroom server.

        Args:
            loop: Event loop the server runs on.
            server_id: Unique identifier of this server.
            server_name: Friendly name of this server.
            clock: Returns the server time in microseconds, defaults to the loop clock.
            table: Room table to use, a fresh one is created if omitted.
        """
        self.loop = loop
        self._id = server_id
        self._name = server_name
        self._clock = clock or self._loop_time_us
        self._table = table or RoomTable()
        self._membership = MembershipManager(self._table, on_event=self._signal_event)
        self._playback = PlaybackAuthority(self._table, self.now_us)
        self._relay = ChunkRelay(self._table)
        self._connections = set()
        self._event_cbs = []
        self._runner = None
        self._zeroconf = None
        self._service_info = None
        logger.debug("SyncRoomServer initialized: id=%s, name=%s", server_id, server_name)

    def _loop_time_us(self) -> int:
        return int(self.loop.time() * 1_000_000)

    def now_us(self) -> int:
        """Current server time in microseconds."""
        return self._clock()

    async def on_client_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming websocket connection from a syncroom client."""
        logger.debug("Incoming client connection from %s", request.remote)
        connection = ClientConnection(self, request)
        self._connections.add(connection)
        self._signal_event(ClientConnectedEvent(connection.connection_id))
        try:
            return await connection.handle_client()
        finally:
            self._connections.discard(connection)
            self._signal_event(ClientDisconnectedEvent(connection.connection_id))

    async def on_debug_rooms(self, _request: web.Request) -> web.Response:
        """Serve the diagnostics snapshot as JSON."""
        return web.json_response(self.diagnostics())

    def diagnostics(self) -> dict[str, Any]:
        """
        Describe the open rooms for operational diagnostics.

        Only room names, member names and admin flags are included, never playback
        content.
        """
        rooms = [
            {
                "code": room.code,
                "name": room.name,
                "member_count": len(room),
                "members": [
                    {"name": member.name, "is_admin": member.is_admin} for member in room.members
                ],
            }
            for room in self._table.rooms
        ]
        return {
            "rooms": rooms,
            "total_rooms": len(rooms),
            "connections": len(self._connections),
        }

    def build_app(self, path: str = DEFAULT_PATH) -> web.Application:
        """Create an aiohttp application exposing the websocket and diagnostics routes."""
        app = web.Application()
        app.router.add_get(path, self.on_client_connect)
        app.router.add_get(DEBUG_ROOMS_PATH, self.on_debug_rooms)
        return app

    async def start_server(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 3001,
        *,
        path: str = DEFAULT_PATH,
        advertise: bool = True,
    ) -> None:
        """Serve clients on ``host:port`` and optionally advertise the server via mDNS."""
        if self._runner is not None:
            logger.debug("Server already running")
            return
        self._runner = web.AppRunner(self.build_app(path))
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("Syncroom server listening on %s:%d%s", host, port, path)
        if advertise:
            await self._advertise(host, port, path)

    async def _advertise(self, host: str, port: int, path: str) -> None:
        address = host if host not in ("", "0.0.0.0", "::") else _guess_local_address()  # noqa: S104
        self._service_info = AsyncServiceInfo(
            SERVICE_TYPE,
            f"{self._name}.{SERVICE_TYPE}",
            parsed_addresses=[address],
            port=port,
            properties={"path": path, "server_id": self._id},
            server=f"{socket.gethostname()}.local.",
        )
        self._zeroconf = AsyncZeroconf()
        await (await self._zeroconf.async_register_service(self._service_info))
        logger.info("Advertising %s at %s:%d via mDNS", self._name, address, port)

    async def close(self) -> None:
        """Close all rooms, stop advertising and stop serving."""
        await self._membership.close_all()
        if self._zeroconf is not None:
            if self._service_info is not None:
                await (await self._zeroconf.async_unregister_service(self._service_info))
                self._service_info = None
            await self._zeroconf.async_close()
            self._zeroconf = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.debug("SyncRoomServer %s closed", self._id)

    def add_event_listener(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback to listen for state changes of the server.

        State changes include:
        - A client connected or disconnected
        - A room was created or closed
        - A member joined or left a room

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)
        return lambda: self._event_cbs.remove(callback)

    def _signal_event(self, event: SyncRoomEvent | RoomEvent) -> None:
        for cb in self._event_cbs:
            _ = self.loop.create_task(cb(event))

    @property
    def table(self) -> RoomTable:
        """Registry of all open rooms."""
        return self._table

    @property
    def membership(self) -> MembershipManager:
        """Handles joins, leaves and disconnects."""
        return self._membership

    @property
    def playback(self) -> PlaybackAuthority:
        """Applies admin playback changes."""
        return self._playback

    @property
    def relay(self) -> ChunkRelay:
        """Forwards live audio chunks."""
        return self._relay

    @property
    def connections(self) -> set[ClientConnection]:
        """All currently open client connections."""
        return self._connections

    @property
    def id(self) -> str:
        """Get the unique identifier of this server."""
        return self._id

    @property
    def name(self) -> str:
        """Get the name of this server."""
        return self._name
