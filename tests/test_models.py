"""Tests for the wire format of syncroom messages."""

from __future__ import annotations

import orjson
import pytest

from aiosyncroom.models import (
    FRAME_HEADER_SIZE,
    BinaryMessageType,
    ClientMessage,
    ErrorKind,
    ServerMessage,
    decode_frame,
    encode_frame,
)
from aiosyncroom.models.core import (
    MemberInfo,
    RoomErrorMessage,
    RoomErrorPayload,
    RoomInfo,
    RoomJoinMessage,
    RoomUpdateMessage,
)
from aiosyncroom.models.playback import (
    PlaybackSnapshotMessage,
    PlaybackSnapshotPayload,
    PlaybackState,
    PlaybackUpdateMessage,
    StreamStartMessage,
)


def test_client_messages_are_discriminated_by_type():
    join = ClientMessage.from_json(
        '{"type": "room/join", "payload": {"room_code": "ABC123", "user_name": "Bob"}}'
    )
    update = ClientMessage.from_json(
        orjson.dumps(
            {
                "type": "playback/update",
                "payload": {
                    "room_code": "ABC123",
                    "position_seconds": 12.5,
                    "is_playing": True,
                    "client_timestamp_us": 99,
                },
            }
        )
    )
    stream = ClientMessage.from_json('{"type": "stream/start", "payload": {"room_code": "ABC123"}}')

    assert isinstance(join, RoomJoinMessage)
    assert join.payload.user_name == "Bob"
    assert isinstance(update, PlaybackUpdateMessage)
    assert update.payload.source_url is None
    assert isinstance(stream, StreamStartMessage)


def test_unknown_message_type_is_rejected():
    with pytest.raises(Exception):  # noqa: B017
        ClientMessage.from_json('{"type": "room/explode", "payload": {}}')


def test_room_info_omits_missing_playback():
    info = RoomInfo("ABC123", "Room", "a", [MemberInfo("a", "Alice", is_admin=True)])

    data = orjson.loads(RoomUpdateMessage(info).to_json())

    assert data["type"] == "room/update"
    assert "playback" not in data["payload"]
    assert data["payload"]["members"] == [{"member_id": "a", "name": "Alice", "is_admin": True}]


def test_snapshot_serializes_origin_and_omits_empty_source():
    state = PlaybackState(1.5, True, 42, None, "Live Stream", live_stream=True)
    message = PlaybackSnapshotMessage(PlaybackSnapshotPayload.from_state(state, "admin"))

    data = orjson.loads(message.to_json())
    parsed = ServerMessage.from_json(message.to_json())

    assert data["payload"]["origin_member_id"] == "admin"
    assert "source_url" not in data["payload"]
    assert isinstance(parsed, PlaybackSnapshotMessage)
    assert parsed.payload.live_stream


def test_error_kind_is_serialized_as_string():
    message = RoomErrorMessage(RoomErrorPayload(ErrorKind.ROOM_NOT_FOUND, "Room 'X' not found"))

    data = orjson.loads(message.to_json())

    assert data["payload"]["kind"] == "room_not_found"


def test_binary_header_layout():
    data = encode_frame(BinaryMessageType.AUDIO_CHUNK, 0x0102030405060708, b"opus")

    assert data[:FRAME_HEADER_SIZE] == bytes([0, 1, 2, 3, 4, 5, 6, 7, 8])
    frame = decode_frame(data)
    assert frame.message_type == 0
    assert frame.timestamp_us == 0x0102030405060708
    assert frame.payload == b"opus"


def test_short_binary_frame_is_rejected():
    with pytest.raises(ValueError):
        decode_frame(b"\x00\x01")
