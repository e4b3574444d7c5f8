"""Syncroom client implementation to join rooms on a syncroom server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, replace
from types import TracebackType
from typing import Any, Self

from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiosyncroom.exceptions import RoomNotFoundError, SyncRoomError
from aiosyncroom.models import (
    BinaryMessageType,
    ClientMessage,
    ErrorKind,
    ServerMessage,
    decode_frame,
    encode_frame,
)
from aiosyncroom.models.core import (
    ClientTimeMessage,
    ClientTimePayload,
    MemberInfo,
    MemberJoinedMessage,
    MemberLeftMessage,
    RoomClosedMessage,
    RoomCreatedMessage,
    RoomCreatedPayload,
    RoomCreateMessage,
    RoomCreatePayload,
    RoomErrorMessage,
    RoomInfo,
    RoomJoinedMessage,
    RoomJoinedPayload,
    RoomJoinMessage,
    RoomJoinPayload,
    RoomLeaveMessage,
    RoomLeavePayload,
    RoomUpdateMessage,
    ServerHelloMessage,
    ServerHelloPayload,
    ServerTimeMessage,
    ServerTimePayload,
)
from aiosyncroom.models.playback import (
    PlaybackSnapshotMessage,
    PlaybackSnapshotPayload,
    PlaybackState,
    PlaybackUpdateMessage,
    PlaybackUpdatePayload,
    RoomCodePayload,
    StreamStartedMessage,
    StreamStartMessage,
    StreamStoppedMessage,
    StreamStopMessage,
    TrackChangedMessage,
    TrackChangedPayload,
    TrackLoadMessage,
    TrackLoadPayload,
)

from .reconciler import (
    DEFAULT_DAMPING_WINDOW_S,
    DEFAULT_TOLERANCE_S,
    ReconcilerState,
    SyncCommand,
    SyncReconciler,
)
from .time_sync import ClockOffsetFilter
from .transport import PlaybackTransport

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
# Shortest delay used when re-arming the damping timer
MIN_EXPIRY_DELAY_S = 0.005

RoomUpdateCallback = Callable[[RoomInfo], Awaitable[None] | None]
MemberJoinedCallback = Callable[[MemberInfo], Awaitable[None] | None]
MemberLeftCallback = Callable[[str], Awaitable[None] | None]
RoomClosedCallback = Callable[[str], Awaitable[None] | None]
TrackChangedCallback = Callable[[TrackChangedPayload], Awaitable[None] | None]
PlaybackSnapshotCallback = Callable[[PlaybackSnapshotPayload], Awaitable[None] | None]
StreamStateCallback = Callable[[bool], Awaitable[None] | None]
AudioChunkCallback = Callable[[int, bytes], Awaitable[None] | None]
CorrectionCallback = Callable[[SyncCommand], Awaitable[None] | None]


@dataclass(slots=True)
class ServerInfo:
    """Information about the connected server."""

    server_id: str
    name: str
    version: int
    connection_id: str


class SyncRoomClient:
    """Async syncroom client able to host or join a room."""

    def __init__(
        self,
        *,
        session: ClientSession | None = None,
        tolerance_s: float = DEFAULT_TOLERANCE_S,
        damping_window_s: float = DEFAULT_DAMPING_WINDOW_S,
    ) -> None:
        """
        Create a new syncroom client instance.

        Args:
            session: aiohttp session to use, a private one is created if omitted.
            tolerance_s: Drift accepted before an attached transport is corrected.
            damping_window_s: Minimum time between two corrections of the transport.
        """
        self._session = session
        self._owns_session = session is None
        self._tolerance_s = tolerance_s
        self._damping_window_s = damping_window_s
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._time_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._request_lock = asyncio.Lock()
        self._pending_response: asyncio.Future[ServerMessage] | None = None
        self._time_filter = ClockOffsetFilter()
        self._server_info: ServerInfo | None = None
        self._server_hello_event: asyncio.Event | None = None
        self._connected = False
        self._pending_time_message = False
        self._room: RoomInfo | None = None
        self._member: MemberInfo | None = None
        self._reconciler: SyncReconciler | None = None
        self._expiry_handle: asyncio.TimerHandle | None = None
        self._room_update_callbacks: list[RoomUpdateCallback] = []
        self._member_joined_callbacks: list[MemberJoinedCallback] = []
        self._member_left_callbacks: list[MemberLeftCallback] = []
        self._room_closed_callbacks: list[RoomClosedCallback] = []
        self._track_changed_callbacks: list[TrackChangedCallback] = []
        self._snapshot_callbacks: list[PlaybackSnapshotCallback] = []
        self._stream_state_callbacks: list[StreamStateCallback] = []
        self._audio_chunk_callbacks: list[AudioChunkCallback] = []
        self._correction_callbacks: list[CorrectionCallback] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def server_info(self) -> ServerInfo | None:
        """Return information about the connected server, if available."""
        return self._server_info

    @property
    def connected(self) -> bool:
        """Return True if the client currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def room(self) -> RoomInfo | None:
        """Latest known state of the room this client is in."""
        return self._room

    @property
    def member(self) -> MemberInfo | None:
        """Our own membership in the current room."""
        return self._member

    @property
    def is_admin(self) -> bool:
        """Return True if this client is the admin of its room."""
        return self._member is not None and self._member.is_admin

    @property
    def reconciler(self) -> SyncReconciler | None:
        """Reconciler steering the attached transport, if any."""
        return self._reconciler

    @property
    def time_filter(self) -> ClockOffsetFilter:
        """Clock offset estimator fed by the time sync loop."""
        return self._time_filter

    async def connect(self, url: str) -> None:
        """Connect to a syncroom server via WebSocket."""
        if self.connected:
            logger.debug("Already connected")
            return

        self._loop = asyncio.get_running_loop()
        if self._session is None:
            self._session = ClientSession()
        self._server_hello_event = asyncio.Event()

        logger.info("Connecting to syncroom server at %s", url)
        self._ws = await self._session.ws_connect(url, heartbeat=30)
        self._connected = True
        self._reader_task = self._loop.create_task(self._reader_loop())

        try:
            await asyncio.wait_for(self._server_hello_event.wait(), timeout=REQUEST_TIMEOUT)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for server/hello") from err

        await self._send_time_message()
        self._time_task = self._loop.create_task(self._time_sync_loop())
        logger.info("Handshake with server complete")

    async def disconnect(self) -> None:
        """Disconnect from the server and release resources."""
        self._connected = False
        current_task = asyncio.current_task(loop=self._loop) if self._loop else None

        if self._time_task is not None and self._time_task is not current_task:
            self._time_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._time_task
            self._time_task = None
        if self._reader_task is not None:
            if self._reader_task is not current_task:
                self._reader_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        if self._pending_response is not None and not self._pending_response.done():
            self._pending_response.set_exception(ConnectionResetError("Disconnected"))
        self._pending_response = None
        self._time_filter.reset()
        self._server_info = None
        self._pending_time_message = False
        self._clear_room()

    async def create_room(self, room_name: str, user_name: str) -> RoomCreatedPayload:
        """Create a new room and become its admin."""
        message = RoomCreateMessage(RoomCreatePayload(room_name=room_name, user_name=user_name))
        response = await self._request(message)
        if not isinstance(response, RoomCreatedMessage):
            raise SyncRoomError(f"Unexpected response {type(response).__name__}")
        return response.payload

    async def join_room(self, room_code: str, user_name: str) -> RoomJoinedPayload:
        """
        Join an existing room as a listener.

        Raises:
            RoomNotFoundError: If no open room has this code.
        """
        message = RoomJoinMessage(RoomJoinPayload(room_code=room_code, user_name=user_name))
        response = await self._request(message)
        if isinstance(response, RoomErrorMessage):
            if response.payload.kind is ErrorKind.ROOM_NOT_FOUND:
                raise RoomNotFoundError(room_code)
            raise SyncRoomError(response.payload.message)
        if not isinstance(response, RoomJoinedMessage):
            raise SyncRoomError(f"Unexpected response {type(response).__name__}")
        return response.payload

    async def leave_room(self) -> None:
        """Leave the current room. Does nothing outside a room."""
        if self._room is None:
            return
        room_code = self._room.room_code
        self._clear_room()
        await self._send_json(RoomLeaveMessage(RoomLeavePayload(room_code=room_code)))

    async def load_track(self, source_url: str, source_name: str) -> None:
        """Load a new track in the room, paused at the start. Admin only."""
        await self._send_json(
            TrackLoadMessage(
                TrackLoadPayload(
                    room_code=self._require_room_code(),
                    source_url=source_url,
                    source_name=source_name,
                )
            )
        )

    async def update_playback(
        self,
        position_seconds: float,
        *,
        is_playing: bool,
        source_url: str | None = None,
        source_name: str | None = None,
    ) -> None:
        """Report the admin's current position and play state."""
        await self._send_json(
            PlaybackUpdateMessage(
                PlaybackUpdatePayload(
                    room_code=self._require_room_code(),
                    position_seconds=position_seconds,
                    is_playing=is_playing,
                    client_timestamp_us=self._now_us(),
                    source_url=source_url,
                    source_name=source_name,
                )
            )
        )

    async def start_live_stream(self) -> None:
        """Switch the room to live stream mode. Admin only."""
        await self._send_json(StreamStartMessage(RoomCodePayload(self._require_room_code())))

    async def stop_live_stream(self) -> None:
        """Leave live stream mode. Admin only."""
        await self._send_json(StreamStopMessage(RoomCodePayload(self._require_room_code())))

    async def send_audio_chunk(self, segment: bytes, timestamp_us: int | None = None) -> None:
        """Send an encoded audio segment to be relayed to the listeners."""
        if not self._ws:
            raise RuntimeError("WebSocket is not connected")
        if timestamp_us is None:
            timestamp_us = self._now_us()
        frame = encode_frame(BinaryMessageType.AUDIO_CHUNK, timestamp_us, segment)
        async with self._send_lock:
            await self._ws.send_bytes(frame)

    def attach_transport(self, transport: PlaybackTransport) -> SyncReconciler:
        """
        Keep ``transport`` aligned with the room's playback.

        Only listeners are corrected, the admin's own transport is never touched.
        """
        self._cancel_expiry()
        self._reconciler = SyncReconciler(
            transport,
            member_id=self._member.member_id if self._member else None,
            tolerance_s=self._tolerance_s,
            damping_window_s=self._damping_window_s,
        )
        return self._reconciler

    def detach_transport(self) -> None:
        """Stop correcting the attached transport."""
        self._cancel_expiry()
        self._reconciler = None

    def server_time_us(self) -> int | None:
        """Current server time, or None while the clock offset is unknown."""
        if not self._time_filter.ready:
            return None
        return self._time_filter.compute_server_time(self._now_us())

    def add_room_update_listener(self, callback: RoomUpdateCallback) -> None:
        """Register a callback invoked when the room state changes."""
        self._room_update_callbacks.append(callback)

    def add_member_joined_listener(self, callback: MemberJoinedCallback) -> None:
        """Register a callback invoked when another member joins."""
        self._member_joined_callbacks.append(callback)

    def add_member_left_listener(self, callback: MemberLeftCallback) -> None:
        """Register a callback invoked with the member id of a departing member."""
        self._member_left_callbacks.append(callback)

    def add_room_closed_listener(self, callback: RoomClosedCallback) -> None:
        """Register a callback invoked with the room code when the room closes."""
        self._room_closed_callbacks.append(callback)

    def add_track_changed_listener(self, callback: TrackChangedCallback) -> None:
        """Register a callback invoked when the admin loads a new track."""
        self._track_changed_callbacks.append(callback)

    def add_playback_snapshot_listener(self, callback: PlaybackSnapshotCallback) -> None:
        """Register a callback invoked on playback/snapshot messages."""
        self._snapshot_callbacks.append(callback)

    def add_stream_state_listener(self, callback: StreamStateCallback) -> None:
        """Register a callback invoked with True on stream start and False on stream stop."""
        self._stream_state_callbacks.append(callback)

    def add_audio_chunk_listener(self, callback: AudioChunkCallback) -> None:
        """Register a callback invoked with the timestamp and bytes of relayed chunks."""
        self._audio_chunk_callbacks.append(callback)

    def add_correction_listener(self, callback: CorrectionCallback) -> None:
        """Register a callback invoked after the attached transport was corrected."""
        self._correction_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_room_code(self) -> str:
        if self._room is None:
            raise RuntimeError("Client is not in a room")
        return self._room.room_code

    def _clear_room(self) -> None:
        self._room = None
        self._member = None
        self._cancel_expiry()
        if self._reconciler is not None:
            self._reconciler.reset()
            self._reconciler.member_id = None

    def _enter_room(self, room: RoomInfo, member: MemberInfo) -> None:
        self._room = room
        self._member = member
        if self._reconciler is not None:
            self._reconciler.reset()
            self._reconciler.member_id = member.member_id
        logger.info(
            "Entered room %s (%s) as %s%s",
            room.room_code,
            room.name,
            member.name,
            " (admin)" if member.is_admin else "",
        )

    async def _request(self, message: ClientMessage) -> ServerMessage:
        """Send a request and wait for the matching room/* response."""
        if not self.connected:
            raise RuntimeError("Client is not connected")
        loop = self._loop or asyncio.get_running_loop()
        async with self._request_lock:
            future: asyncio.Future[ServerMessage] = loop.create_future()
            self._pending_response = future
            try:
                await self._send_json(message)
                return await asyncio.wait_for(future, timeout=REQUEST_TIMEOUT)
            finally:
                self._pending_response = None

    def _resolve_request(self, message: ServerMessage) -> None:
        future = self._pending_response
        if future is not None and not future.done():
            future.set_result(message)

    async def _send_time_message(self) -> None:
        if self._pending_time_message or not self.connected:
            return
        message = ClientTimeMessage(payload=ClientTimePayload(client_transmitted=self._now_us()))
        self._pending_time_message = True
        try:
            await self._send_json(message)
        except Exception:
            self._pending_time_message = False
            raise

    async def _send_json(self, message: ClientMessage) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket is not connected")
        async with self._send_lock:
            await self._ws.send_str(message.to_json())

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                await self._handle_ws_message(msg)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass
        except Exception:
            logger.exception("WebSocket reader encountered an error")
        finally:
            if self._connected:
                await self.disconnect()

    async def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is WSMsgType.TEXT:
            await self._handle_json_message(msg.data)
        elif msg.type is WSMsgType.BINARY:
            await self._handle_binary_message(msg.data)
        elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            logger.info("WebSocket closed by server")
            await self.disconnect()
        elif msg.type is WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception() if self._ws else "unknown")
            await self.disconnect()

    async def _handle_json_message(self, data: str) -> None:  # noqa: PLR0912
        try:
            message = ServerMessage.from_json(data)
        except Exception:
            logger.exception("Failed to parse server message: %s", data)
            return

        match message:
            case ServerHelloMessage(payload=payload):
                self._handle_server_hello(payload)
            case ServerTimeMessage(payload=payload):
                self._handle_server_time(payload)
            case RoomCreatedMessage(payload=payload):
                self._enter_room(payload.room, payload.member)
                self._resolve_request(message)
            case RoomJoinedMessage(payload=payload):
                self._enter_room(payload.room, payload.member)
                self._resolve_request(message)
                if payload.room.playback is not None:
                    await self._reconcile(payload.room.playback)
            case RoomErrorMessage(payload=payload):
                logger.warning("Room request failed: %s", payload.message)
                self._resolve_request(message)
            case RoomUpdateMessage(payload=payload):
                await self._handle_room_update(payload)
            case MemberJoinedMessage(payload=payload):
                await self._notify_callbacks(self._member_joined_callbacks, payload)
            case MemberLeftMessage(payload=payload):
                await self._notify_callbacks(self._member_left_callbacks, payload.member_id)
            case RoomClosedMessage(payload=payload):
                await self._handle_room_closed(payload.room_code)
            case TrackChangedMessage(payload=payload):
                logger.info("Track changed to %s", payload.source_name)
                await self._notify_callbacks(self._track_changed_callbacks, payload)
            case PlaybackSnapshotMessage(payload=payload):
                await self._handle_playback_snapshot(payload)
            case StreamStartedMessage():
                logger.info("Live stream started")
                await self._notify_callbacks(self._stream_state_callbacks, True)  # noqa: FBT003
            case StreamStoppedMessage():
                logger.info("Live stream stopped")
                await self._notify_callbacks(self._stream_state_callbacks, False)  # noqa: FBT003
            case _:
                logger.debug("Unhandled server message type: %s", type(message).__name__)

    async def _handle_binary_message(self, data: bytes) -> None:
        try:
            frame = decode_frame(data)
        except ValueError:
            logger.warning("Dropping truncated binary frame of %d bytes", len(data))
            return

        if frame.message_type != BinaryMessageType.AUDIO_CHUNK.value:
            logger.warning("Unknown binary message type: %s", frame.message_type)
            return

        for callback in self._audio_chunk_callbacks:
            try:
                result = callback(frame.timestamp_us, frame.payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in audio chunk callback %s", callback)

    def _handle_server_hello(self, payload: ServerHelloPayload) -> None:
        self._server_info = ServerInfo(
            server_id=payload.server_id,
            name=payload.name,
            version=payload.version,
            connection_id=payload.connection_id,
        )
        if self._server_hello_event:
            self._server_hello_event.set()
        logger.info(
            "Connected to server '%s' (%s) version %s",
            payload.name,
            payload.server_id,
            payload.version,
        )

    def _handle_server_time(self, payload: ServerTimePayload) -> None:
        self._time_filter.add_measurement(
            payload.client_transmitted,
            payload.server_received,
            payload.server_transmitted,
            self._now_us(),
        )
        self._pending_time_message = False

    async def _handle_room_update(self, room: RoomInfo) -> None:
        if self._room is None or room.room_code != self._room.room_code:
            # Updates queued before a leave was processed by the server
            logger.debug("Ignoring update for room %s we are not in", room.room_code)
            return
        self._room = room
        if self._member is not None and (own := room.get_member(self._member.member_id)):
            self._member = own
        await self._notify_callbacks(self._room_update_callbacks, room)
        if room.playback is not None:
            await self._reconcile(room.playback)

    async def _handle_room_closed(self, room_code: str) -> None:
        logger.info("Room %s was closed", room_code)
        if self._room is not None and self._room.room_code == room_code:
            self._clear_room()
        await self._notify_callbacks(self._room_closed_callbacks, room_code)

    async def _handle_playback_snapshot(self, snapshot: PlaybackSnapshotPayload) -> None:
        if self._room is None:
            logger.debug("Ignoring playback snapshot outside of a room")
            return
        self._room = replace(
            self._room,
            playback=PlaybackState(
                position_seconds=snapshot.position_seconds,
                is_playing=snapshot.is_playing,
                server_timestamp_us=snapshot.server_timestamp_us,
                source_url=snapshot.source_url,
                source_name=snapshot.source_name,
                live_stream=snapshot.live_stream,
            ),
        )
        await self._notify_callbacks(self._snapshot_callbacks, snapshot)
        await self._reconcile(snapshot)

    def _received_at_us(self, state: PlaybackState) -> int:
        """Receipt time on the server clock, zero delay while the offset is unknown."""
        server_now = self.server_time_us()
        return state.server_timestamp_us if server_now is None else server_now

    async def _reconcile(self, state: PlaybackState) -> None:
        if self._reconciler is None or self._member is None or self._member.is_admin:
            return
        command = self._reconciler.ingest(state, self._received_at_us(state))
        self._schedule_expiry()
        if command is not None:
            await self._notify_callbacks(self._correction_callbacks, command)

    def _schedule_expiry(self) -> None:
        reconciler = self._reconciler
        if reconciler is None or reconciler.state is not ReconcilerState.CORRECTING:
            return
        if self._expiry_handle is not None:
            return
        server_now = self.server_time_us()
        if server_now is None:
            delay = reconciler.damping_window_s
        else:
            delay = (reconciler.deadline_us - server_now) / 1_000_000
        loop = self._loop or asyncio.get_running_loop()
        self._expiry_handle = loop.call_later(
            max(delay, MIN_EXPIRY_DELAY_S), self._on_damping_elapsed
        )

    def _cancel_expiry(self) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None

    def _on_damping_elapsed(self) -> None:
        self._expiry_handle = None
        reconciler = self._reconciler
        if reconciler is None:
            return
        server_now = self.server_time_us()
        if server_now is None:
            server_now = reconciler.deadline_us
        command = reconciler.expire(server_now)
        self._schedule_expiry()
        if command is not None and self._loop is not None:
            _ = self._loop.create_task(self._notify_callbacks(self._correction_callbacks, command))

    async def _notify_callbacks(
        self,
        callbacks: list[Callable[[Any], Awaitable[None] | None]],
        payload: Any,
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in client callback %s", callback)

    async def _time_sync_loop(self) -> None:
        try:
            while self.connected:
                try:
                    await self._send_time_message()
                except Exception:
                    logger.exception("Failed to send time sync message")
                await asyncio.sleep(self._compute_time_sync_interval())
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass

    def _compute_time_sync_interval(self) -> float:
        if not self._time_filter.ready:
            return 0.2
        error = self._time_filter.error
        if error < 2_000:
            return 5.0
        if error < 10_000:
            return 2.0
        return 0.5

    def _now_us(self) -> int:
        loop = self._loop or asyncio.get_running_loop()
        return int(loop.time() * 1_000_000)

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Disconnect when leaving the async context manager."""
        await self.disconnect()
