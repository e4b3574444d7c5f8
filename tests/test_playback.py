"""Tests for admin-only playback changes."""

from __future__ import annotations

import pytest
from conftest import DummyConnection, FakeClock

from aiosyncroom.models import PlaybackMode
from aiosyncroom.models.core import RoomUpdateMessage
from aiosyncroom.models.playback import (
    LIVE_STREAM_NAME,
    PlaybackSnapshotMessage,
    TrackChangedMessage,
)
from aiosyncroom.server import MembershipManager, PlaybackAuthority, RoomTable


@pytest.fixture()
async def room_with_listener(anyio_backend, membership: MembershipManager):
    alice = DummyConnection("alice")
    bob = DummyConnection("bob")
    room, admin = await membership.create_room("Room", "Alice", alice)
    _, listener = await membership.join(room.room_code, "Bob", bob)
    alice.sent.clear()
    bob.sent.clear()
    return room.room_code, admin.member_id, listener.member_id, alice, bob


@pytest.mark.anyio
async def test_non_admin_changes_are_ignored(
    playback: PlaybackAuthority, table: RoomTable, room_with_listener
):
    code, _, listener_id, alice, bob = room_with_listener

    assert not await playback.load_track(code, listener_id, "http://x/song.mp3", "Song")
    assert not await playback.update_playback(
        code, listener_id, 12.0, is_playing=True, client_timestamp_us=0
    )
    assert not await playback.start_live_stream(code, listener_id)
    assert not await playback.stop_live_stream(code, listener_id)

    assert table.lookup(code).playback is None
    assert alice.sent == []
    assert bob.sent == []


@pytest.mark.anyio
async def test_unknown_room_is_ignored(playback: PlaybackAuthority):
    assert not await playback.load_track("ZZZZZZ", "someone", "http://x", "x")


@pytest.mark.anyio
async def test_load_track_resets_to_paused_start(
    playback: PlaybackAuthority, table: RoomTable, clock: FakeClock, room_with_listener
):
    code, admin_id, _, alice, bob = room_with_listener

    assert await playback.load_track(code, admin_id, "http://x/song.mp3", "Song")

    state = table.lookup(code).playback
    assert state.position_seconds == 0.0
    assert not state.is_playing
    assert state.server_timestamp_us == clock.now
    assert state.mode is PlaybackMode.TRACK
    for connection in (alice, bob):
        assert connection.types() == ["track/changed", "room/update"]
        changed = connection.of_type(TrackChangedMessage)[0].payload
        assert (changed.source_url, changed.source_name) == ("http://x/song.mp3", "Song")
        assert connection.of_type(RoomUpdateMessage)[0].payload.playback.source_name == "Song"


@pytest.mark.anyio
async def test_update_playback_is_stamped_with_server_time(
    playback: PlaybackAuthority, table: RoomTable, clock: FakeClock, room_with_listener
):
    code, admin_id, _, alice, bob = room_with_listener
    await playback.load_track(code, admin_id, "http://x/song.mp3", "Song")
    alice.sent.clear()
    bob.sent.clear()
    clock.advance(2_000_000)

    assert await playback.update_playback(
        code, admin_id, 10.0, is_playing=True, client_timestamp_us=123
    )

    state = table.lookup(code).playback
    assert state.server_timestamp_us == clock.now
    assert state.position_seconds == 10.0
    assert state.is_playing
    # Source is kept when the update does not carry one
    assert state.source_url == "http://x/song.mp3"
    assert alice.sent == []
    snapshot = bob.of_type(PlaybackSnapshotMessage)[0].payload
    assert snapshot.server_timestamp_us == clock.now
    assert snapshot.origin_member_id == admin_id
    assert snapshot.position_seconds == 10.0


@pytest.mark.anyio
async def test_update_playback_can_switch_source(
    playback: PlaybackAuthority, table: RoomTable, room_with_listener
):
    code, admin_id, _, _, _ = room_with_listener

    await playback.update_playback(
        code,
        admin_id,
        3.0,
        is_playing=False,
        client_timestamp_us=0,
        source_url="http://x/other.mp3",
        source_name="Other",
    )

    state = table.lookup(code).playback
    assert (state.source_url, state.source_name) == ("http://x/other.mp3", "Other")


@pytest.mark.anyio
async def test_live_stream_lifecycle(
    playback: PlaybackAuthority, table: RoomTable, room_with_listener
):
    code, admin_id, _, alice, bob = room_with_listener

    assert await playback.start_live_stream(code, admin_id)
    state = table.lookup(code).playback
    assert state.live_stream
    assert state.is_playing
    assert state.source_name == LIVE_STREAM_NAME
    assert state.mode is PlaybackMode.LIVE_STREAM
    assert bob.types() == ["stream/started", "room/update"]

    bob.sent.clear()
    assert await playback.stop_live_stream(code, admin_id)
    assert table.lookup(code).playback is None
    assert bob.types() == ["stream/stopped", "room/update"]
    assert alice.types()[-2:] == ["stream/stopped", "room/update"]


@pytest.mark.anyio
async def test_former_admin_has_no_authority(
    membership: MembershipManager, playback: PlaybackAuthority, room_with_listener
):
    code, admin_id, _, _, bob = room_with_listener
    await membership.leave(code, admin_id)
    bob.sent.clear()

    assert not await playback.load_track(code, admin_id, "http://x", "x")
    assert bob.sent == []


@pytest.mark.anyio
async def test_closed_member_does_not_stop_track_change(
    membership: MembershipManager, playback: PlaybackAuthority
):
    alice = DummyConnection("alice")
    gone = DummyConnection("gone")
    bob = DummyConnection("bob")
    room, admin = await membership.create_room("Room", "Alice", alice)
    await membership.join(room.room_code, "Gone", gone)
    await membership.join(room.room_code, "Bob", bob)
    for connection in (alice, gone, bob):
        connection.sent.clear()
    gone.closed = True

    assert await playback.load_track(room.room_code, admin.member_id, "http://x/song.mp3", "Song")

    assert gone.sent == []
    assert bob.types() == ["track/changed", "room/update"]
    assert alice.types() == ["track/changed", "room/update"]
