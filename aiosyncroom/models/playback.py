"""Playback messages for the syncroom protocol.

This module contains messages that change or describe what a room is playing. Only the
admin of a room may send the client side of these messages; the server stamps every
accepted change with its own clock and fans it out to the other members, which use the
timestamp to compensate for network latency.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, PlaybackMode, ServerMessage

LIVE_STREAM_NAME = "Live Stream"


@dataclass
class PlaybackState(DataClassORJSONMixin):
    """Server-stamped description of a room's playback."""

    position_seconds: float
    """Position within the source at server_timestamp_us."""
    is_playing: bool
    """Whether the source was advancing at server_timestamp_us."""
    server_timestamp_us: int
    """Server clock in microseconds when this state was recorded."""
    source_url: str | None = None
    """URL of the loaded track, None in live-stream mode."""
    source_name: str | None = None
    """Display name of the source."""
    live_stream: bool = False
    """True while the admin relays live audio chunks instead of a track."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    @property
    def mode(self) -> PlaybackMode:
        """Return what kind of source this state describes."""
        if self.live_stream:
            return PlaybackMode.LIVE_STREAM
        if self.source_url is None:
            return PlaybackMode.IDLE
        return PlaybackMode.TRACK


# Client -> Server: track/load
@dataclass
class TrackLoadPayload(DataClassORJSONMixin):
    """Track the admin wants every member to load."""

    room_code: str
    """Room the track is loaded in."""
    source_url: str
    """URL of the track."""
    source_name: str
    """Display name of the track."""


@dataclass
class TrackLoadMessage(ClientMessage):
    """Message sent by the admin to load a track."""

    payload: TrackLoadPayload
    type: Literal["track/load"] = "track/load"


# Client -> Server: playback/update
@dataclass
class PlaybackUpdatePayload(DataClassORJSONMixin):
    """Playback position reported by the admin."""

    room_code: str
    """Room the update applies to."""
    position_seconds: float
    """Position of the admin's local playback."""
    is_playing: bool
    """Whether the admin's local playback is running."""
    client_timestamp_us: int
    """Admin's clock when the position was sampled, informational only."""
    source_url: str | None = None
    """Replaces the current source URL when set."""
    source_name: str | None = None
    """Replaces the current source name when set."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class PlaybackUpdateMessage(ClientMessage):
    """Message sent by the admin after play, pause or seek."""

    payload: PlaybackUpdatePayload
    type: Literal["playback/update"] = "playback/update"


@dataclass
class RoomCodePayload(DataClassORJSONMixin):
    """Payload naming only the target room."""

    room_code: str
    """Room the command applies to."""


# Client -> Server: stream/start
@dataclass
class StreamStartMessage(ClientMessage):
    """Message sent by the admin to switch the room to live-stream mode."""

    payload: RoomCodePayload
    type: Literal["stream/start"] = "stream/start"


# Client -> Server: stream/stop
@dataclass
class StreamStopMessage(ClientMessage):
    """Message sent by the admin to end live-stream mode."""

    payload: RoomCodePayload
    type: Literal["stream/stop"] = "stream/stop"


# Server -> Client: track/changed
@dataclass
class TrackChangedPayload(DataClassORJSONMixin):
    """Track that was loaded by the admin."""

    source_url: str
    """URL of the track."""
    source_name: str
    """Display name of the track."""


@dataclass
class TrackChangedMessage(ServerMessage):
    """Message sent to all members when the admin loads a track."""

    payload: TrackChangedPayload
    type: Literal["track/changed"] = "track/changed"


# Server -> Client: playback/snapshot
@dataclass
class PlaybackSnapshotPayload(PlaybackState):
    """Playback state plus the member whose update produced it."""

    origin_member_id: str | None = None
    """Member that reported this state, used to ignore echoes."""

    @classmethod
    def from_state(
        cls, state: PlaybackState, origin_member_id: str | None
    ) -> PlaybackSnapshotPayload:
        """Build a snapshot payload from a stored playback state."""
        return cls(
            position_seconds=state.position_seconds,
            is_playing=state.is_playing,
            server_timestamp_us=state.server_timestamp_us,
            source_url=state.source_url,
            source_name=state.source_name,
            live_stream=state.live_stream,
            origin_member_id=origin_member_id,
        )


@dataclass
class PlaybackSnapshotMessage(ServerMessage):
    """Message sent to listeners after every accepted playback/update."""

    payload: PlaybackSnapshotPayload
    type: Literal["playback/snapshot"] = "playback/snapshot"


# Server -> Client: stream/started
@dataclass
class StreamStartedMessage(ServerMessage):
    """Message sent to all members when live-stream mode begins."""

    payload: RoomCodePayload
    type: Literal["stream/started"] = "stream/started"


# Server -> Client: stream/stopped
@dataclass
class StreamStoppedMessage(ServerMessage):
    """Message sent to all members when live-stream mode ends."""

    payload: RoomCodePayload
    type: Literal["stream/stopped"] = "stream/stopped"
