"""Represents a single client connected to the server."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from typing import TYPE_CHECKING

from aiohttp import WSMsgType, web

from aiosyncroom.exceptions import RoomNotFoundError
from aiosyncroom.models import (
    BinaryMessageType,
    ClientMessage,
    ErrorKind,
    ServerMessage,
    decode_frame,
)
from aiosyncroom.models.core import (
    ClientTimeMessage,
    RoomCreatedMessage,
    RoomCreatedPayload,
    RoomCreateMessage,
    RoomErrorMessage,
    RoomErrorPayload,
    RoomJoinedMessage,
    RoomJoinedPayload,
    RoomJoinMessage,
    RoomLeaveMessage,
    ServerHelloMessage,
    ServerHelloPayload,
    ServerTimeMessage,
    ServerTimePayload,
)
from aiosyncroom.models.playback import (
    PlaybackUpdateMessage,
    StreamStartMessage,
    StreamStopMessage,
    TrackLoadMessage,
)

from .table import normalize_room_code

MAX_PENDING_MSG = 512
PROTOCOL_VERSION = 1

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import SyncRoomServer


class ClientConnection:
    """A websocket connection from a syncroom client.

    Outgoing messages are queued and written by a dedicated writer task, so enqueuing
    never blocks the room that produced the message.
    """

    _server: SyncRoomServer
    _request: web.Request
    wsock: web.WebSocketResponse
    _connection_id: str
    # Task responsible for sending queued messages
    _writer_task: asyncio.Task[None] | None = None
    _to_write: asyncio.Queue[ServerMessage | bytes]

    def __init__(self, server: SyncRoomServer, request: web.Request) -> None:
        """Do not call this constructor.

        Use SyncRoomServer.on_client_connect instead.
        """
        self._server = server
        self._request = request
        self.wsock = web.WebSocketResponse(heartbeat=55)
        self._connection_id = uuid.uuid4().hex
        self._to_write = asyncio.Queue(maxsize=MAX_PENDING_MSG)

    @property
    def connection_id(self) -> str:
        """Identity the server assigned to this connection."""
        return self._connection_id

    @property
    def remote(self) -> str:
        """Remote address of the client."""
        return self._request.remote or "Unknown"

    def _member_in(self, room_code: str) -> str | None:
        """Return our member id if this connection participates in ``room_code``."""
        binding = self._server.table.resolve(self._connection_id)
        if binding is None or binding.room_code != normalize_room_code(room_code):
            return None
        return binding.member_id

    async def handle_client(self) -> web.WebSocketResponse:
        """Handle the websocket connection until it closes."""
        wsock = self.wsock
        try:
            async with asyncio.timeout(10):
                _ = await wsock.prepare(self._request)
        except TimeoutError:
            logger.warning("Timeout preparing request from %s", self.remote)
            return wsock

        logger.info("Connection %s established with %s", self._connection_id, self.remote)
        self._writer_task = self._server.loop.create_task(self._writer())

        self.send_message(
            ServerHelloMessage(
                payload=ServerHelloPayload(
                    server_id=self._server.id,
                    name=self._server.name,
                    version=PROTOCOL_VERSION,
                    connection_id=self._connection_id,
                )
            )
        )

        # Listen for all incoming messages
        try:
            while not wsock.closed:
                msg = await wsock.receive()
                timestamp = self._server.now_us()

                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type == WSMsgType.BINARY:
                    self._handle_binary(msg.data)
                    continue

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ClientMessage.from_json(msg.data)
                except Exception:
                    logger.exception("Malformed message from %s", self._connection_id)
                    self.send_message(
                        RoomErrorMessage(
                            RoomErrorPayload(ErrorKind.INVALID_REQUEST, "Malformed message")
                        )
                    )
                    continue

                try:
                    await self._handle_message(message, timestamp)
                except Exception:
                    logger.exception("Error handling message from %s", self._connection_id)
            logger.debug("wsock was closed for %s", self.remote)

        except asyncio.CancelledError:
            logger.debug("Connection closed by client")
        except Exception:
            logger.exception("Unexpected error inside websocket API")
        finally:
            await self._server.membership.disconnect(self)
            await self._close()

        return wsock

    async def _close(self) -> None:
        """Stop the writer and close the websocket."""
        if self._writer_task and not self._writer_task.done():
            _ = self._writer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._writer_task
        if not self.wsock.closed:
            _ = await self.wsock.close()
        logger.info("Connection %s disconnected", self._connection_id)

    async def _handle_message(self, message: ClientMessage, timestamp: int) -> None:  # noqa: PLR0911
        """Handle incoming requests from the client."""
        match message:
            case ClientTimeMessage(payload=payload):
                self.send_message(
                    ServerTimeMessage(
                        ServerTimePayload(
                            client_transmitted=payload.client_transmitted,
                            server_received=timestamp,
                            server_transmitted=self._server.now_us(),
                        )
                    )
                )
            case RoomCreateMessage(payload=payload):
                room, member = await self._server.membership.create_room(
                    payload.room_name, payload.user_name, self
                )
                self.send_message(RoomCreatedMessage(RoomCreatedPayload(room=room, member=member)))
            case RoomJoinMessage(payload=payload):
                try:
                    room, member = await self._server.membership.join(
                        payload.room_code, payload.user_name, self
                    )
                except RoomNotFoundError as err:
                    self.send_message(
                        RoomErrorMessage(RoomErrorPayload(ErrorKind.ROOM_NOT_FOUND, str(err)))
                    )
                    return
                self.send_message(RoomJoinedMessage(RoomJoinedPayload(room=room, member=member)))
            case RoomLeaveMessage(payload=payload):
                if (member_id := self._member_in(payload.room_code)) is None:
                    return
                _ = await self._server.membership.leave(payload.room_code, member_id)
            case TrackLoadMessage(payload=payload):
                if (member_id := self._member_in(payload.room_code)) is None:
                    return
                _ = await self._server.playback.load_track(
                    payload.room_code, member_id, payload.source_url, payload.source_name
                )
            case PlaybackUpdateMessage(payload=payload):
                if (member_id := self._member_in(payload.room_code)) is None:
                    return
                _ = await self._server.playback.update_playback(
                    payload.room_code,
                    member_id,
                    payload.position_seconds,
                    is_playing=payload.is_playing,
                    client_timestamp_us=payload.client_timestamp_us,
                    source_url=payload.source_url,
                    source_name=payload.source_name,
                )
            case StreamStartMessage(payload=payload):
                if (member_id := self._member_in(payload.room_code)) is None:
                    return
                _ = await self._server.playback.start_live_stream(payload.room_code, member_id)
            case StreamStopMessage(payload=payload):
                if (member_id := self._member_in(payload.room_code)) is None:
                    return
                _ = await self._server.playback.stop_live_stream(payload.room_code, member_id)
            case _:
                logger.debug("Unhandled client message type: %s", type(message).__name__)

    def _handle_binary(self, data: bytes) -> None:
        """Relay an audio chunk sent by the admin."""
        try:
            frame = decode_frame(data)
        except ValueError:
            logger.warning("Malformed binary frame from %s", self._connection_id)
            return
        if frame.message_type != BinaryMessageType.AUDIO_CHUNK.value:
            logger.debug("Ignoring binary message type %s", frame.message_type)
            return
        binding = self._server.table.resolve(self._connection_id)
        if binding is None:
            return
        _ = self._server.relay.relay_chunk(
            binding.room_code,
            binding.member_id,
            frame.payload,
            frame.timestamp_us,
        )

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        # Exceptions if Socket disconnected or cancelled by connection handler
        with suppress(
            RuntimeError,
            ConnectionResetError,
            asyncio.CancelledError,
        ):
            while not self.wsock.closed:
                item = await self._to_write.get()

                if isinstance(item, bytes):
                    await self.wsock.send_bytes(item)
                else:
                    if isinstance(item, ServerTimeMessage):
                        item.payload.server_transmitted = self._server.now_us()
                    await self.wsock.send_str(item.to_json())

    def send_message(self, message: ServerMessage | bytes) -> None:
        """
        Enqueue a JSON message or a binary frame to be sent to the client.

        Raises:
            ConnectionResetError: If the websocket is already closed.
            asyncio.QueueFull: If the client does not keep up with its messages.
        """
        if self.wsock.closed:
            raise ConnectionResetError(f"Connection {self._connection_id} is closed")
        self._to_write.put_nowait(message)
