"""End-to-end tests of the client library against a running server."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from aiohttp import ClientSession, WSMsgType
from aiohttp.test_utils import TestServer

from aiosyncroom.client import SyncCommand, SyncRoomClient, VirtualTransport
from aiosyncroom.exceptions import RoomNotFoundError
from aiosyncroom.models import ServerMessage
from aiosyncroom.models.core import (
    MemberInfo,
    RoomErrorMessage,
    RoomUpdateMessage,
    ServerHelloMessage,
)
from aiosyncroom.models.playback import (
    PlaybackSnapshotMessage,
    PlaybackSnapshotPayload,
    PlaybackState,
    TrackChangedPayload,
)
from aiosyncroom.server import ClientConnectedEvent, SyncRoomServer
from aiosyncroom.server.server import DEBUG_ROOMS_PATH, DEFAULT_PATH

TIMEOUT = 5


async def wait_for(event: asyncio.Event) -> None:
    await asyncio.wait_for(event.wait(), timeout=TIMEOUT)


@pytest.fixture()
async def running_server(anyio_backend):
    server = SyncRoomServer(asyncio.get_running_loop(), "test-server", "Test Server")
    async with TestServer(server.build_app()) as test_server:
        yield server, test_server
        await server.close()


@pytest.fixture()
def url(running_server) -> str:
    _, test_server = running_server
    return str(test_server.make_url(DEFAULT_PATH))


@pytest.mark.anyio
async def test_listener_follows_admin_playback(url: str):
    transport = VirtualTransport()
    member_joined = asyncio.Event()
    track_changed = asyncio.Event()
    corrected = asyncio.Event()
    commands: list[SyncCommand] = []

    def on_member_joined(_member: MemberInfo) -> None:
        member_joined.set()

    def on_track_changed(payload: TrackChangedPayload) -> None:
        transport.load(payload.source_url, payload.source_name)
        track_changed.set()

    def on_correction(command: SyncCommand) -> None:
        commands.append(command)
        corrected.set()

    async with SyncRoomClient() as host, SyncRoomClient() as listener:
        await host.connect(url)
        await listener.connect(url)
        assert host.server_info is not None
        assert host.server_info.name == "Test Server"

        created = await host.create_room("Movie Night", "Alice")
        host.add_member_joined_listener(on_member_joined)
        listener.attach_transport(transport)
        listener.add_track_changed_listener(on_track_changed)
        listener.add_correction_listener(on_correction)

        joined = await listener.join_room(created.room.room_code.lower(), "Bob")
        assert {m.name: m.is_admin for m in joined.room.members} == {
            "Alice": True,
            "Bob": False,
        }
        assert host.is_admin
        assert not listener.is_admin
        await wait_for(member_joined)

        await host.load_track("http://example.com/song.mp3", "Song")
        await wait_for(track_changed)
        await host.update_playback(10.0, is_playing=True)
        await wait_for(corrected)

        assert commands[0].seek_to >= 10.0
        assert transport.is_playing
        assert transport.position == pytest.approx(10.0, abs=1.0)
        assert listener.room is not None
        assert listener.room.playback is not None
        assert listener.room.playback.source_name == "Song"


@pytest.mark.anyio
async def test_join_unknown_room_raises(url: str):
    async with SyncRoomClient() as client:
        await client.connect(url)

        with pytest.raises(RoomNotFoundError):
            await client.join_room("ZZZZZZ", "Bob")
        assert client.room is None


@pytest.mark.anyio
async def test_admin_disconnect_closes_room(running_server, url: str):
    server, _ = running_server
    closed = asyncio.Event()

    async with SyncRoomClient() as host, SyncRoomClient() as listener:
        await host.connect(url)
        await listener.connect(url)
        created = await host.create_room("Room", "Alice")
        await listener.join_room(created.room.room_code, "Bob")
        listener.add_room_closed_listener(lambda _code: closed.set())

        await host.disconnect()
        await wait_for(closed)

        assert listener.room is None
        assert len(server.table) == 0


@pytest.mark.anyio
async def test_live_chunks_reach_listeners(url: str):
    streaming = asyncio.Event()
    chunk_received = asyncio.Event()
    chunks: list[tuple[int, bytes]] = []

    def on_stream_state(live: bool) -> None:  # noqa: FBT001
        if live:
            streaming.set()

    def on_chunk(timestamp_us: int, segment: bytes) -> None:
        chunks.append((timestamp_us, segment))
        chunk_received.set()

    async with SyncRoomClient() as host, SyncRoomClient() as listener:
        await host.connect(url)
        await listener.connect(url)
        created = await host.create_room("Live", "Alice")
        await listener.join_room(created.room.room_code, "Bob")
        listener.add_stream_state_listener(on_stream_state)
        listener.add_audio_chunk_listener(on_chunk)

        await host.start_live_stream()
        await wait_for(streaming)
        await host.send_audio_chunk(b"segment", 123_456)
        await wait_for(chunk_received)

        assert chunks == [(123_456, b"segment")]
        assert listener.room.playback.live_stream


@pytest.mark.anyio
async def test_debug_rooms_lists_names_only(running_server, url: str):
    _, test_server = running_server

    async with SyncRoomClient() as host, SyncRoomClient() as listener:
        await host.connect(url)
        await listener.connect(url)
        created = await host.create_room("Movie Night", "Alice")
        await listener.join_room(created.room.room_code, "Bob")
        await host.load_track("http://example.com/secret.mp3", "Secret")

        async with ClientSession() as session:
            response = await session.get(test_server.make_url(DEBUG_ROOMS_PATH))
            body = await response.json()

    assert body["total_rooms"] == 1
    room = body["rooms"][0]
    assert room["code"] == created.room.room_code
    assert room["member_count"] == 2
    assert {"name": "Alice", "is_admin": True} in room["members"]
    assert "secret.mp3" not in str(body)


@pytest.mark.anyio
async def test_malformed_message_gets_error_and_connection_survives(url: str):
    async with ClientSession() as session, session.ws_connect(url) as ws:
        hello = ServerMessage.from_json((await ws.receive(timeout=TIMEOUT)).data)
        assert isinstance(hello, ServerHelloMessage)

        await ws.send_str("not json at all")
        error = ServerMessage.from_json((await ws.receive(timeout=TIMEOUT)).data)
        assert isinstance(error, RoomErrorMessage)
        assert error.payload.kind.value == "invalid_request"

        await ws.send_str('{"type": "client/time", "payload": {"client_transmitted": 1}}')
        reply = await ws.receive(timeout=TIMEOUT)
        assert reply.type is WSMsgType.TEXT
        assert '"server/time"' in reply.data


@pytest.mark.anyio
async def test_connection_events_are_signalled(running_server, url: str):
    server, _ = running_server
    connected = asyncio.Event()

    async def on_event(event) -> None:
        if isinstance(event, ClientConnectedEvent):
            connected.set()

    server.add_event_listener(on_event)
    async with SyncRoomClient() as client:
        await client.connect(url)
        await wait_for(connected)

    assert client.server_info is None


@pytest.mark.anyio
async def test_updates_queued_before_leave_are_ignored(url: str):
    transport = VirtualTransport()
    commands: list[SyncCommand] = []

    async with SyncRoomClient() as host, SyncRoomClient() as listener:
        await host.connect(url)
        await listener.connect(url)
        created = await host.create_room("Room", "Alice")
        listener.attach_transport(transport)
        listener.add_correction_listener(commands.append)
        joined = await listener.join_room(created.room.room_code, "Bob")

        await listener.leave_room()

        stale = PlaybackState(30.0, True, 1, "http://example.com/song.mp3", "Song")
        update = RoomUpdateMessage(replace(joined.room, playback=stale))
        snapshot = PlaybackSnapshotMessage(
            PlaybackSnapshotPayload.from_state(stale, created.member.member_id)
        )
        await listener._handle_json_message(update.to_json())  # noqa: SLF001
        await listener._handle_json_message(snapshot.to_json())  # noqa: SLF001

        assert listener.room is None
        assert listener.member is None
        assert commands == []
        assert not transport.is_playing
        assert transport.position == 0.0
