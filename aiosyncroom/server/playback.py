"""Admin-only changes to what a room is playing."""

from __future__ import annotations

import logging
from collections.abc import Callable

from aiosyncroom.exceptions import UnauthorizedError
from aiosyncroom.models.core import RoomUpdateMessage
from aiosyncroom.models.playback import (
    LIVE_STREAM_NAME,
    PlaybackSnapshotMessage,
    PlaybackSnapshotPayload,
    PlaybackState,
    RoomCodePayload,
    StreamStartedMessage,
    StreamStoppedMessage,
    TrackChangedMessage,
    TrackChangedPayload,
)

from .broadcast import broadcast
from .room import Room
from .table import RoomTable

logger = logging.getLogger(__name__)


class PlaybackAuthority:
    """
    Applies playback changes requested by the admin of a room.

    Authority is checked on every call. Requests from anyone but the current admin,
    or for rooms that no longer exist, are dropped without changing state or
    notifying anybody; the methods then return False.
    """

    def __init__(self, table: RoomTable, clock: Callable[[], int]) -> None:
        """
        Initialize the authority.

        Args:
            table: Table holding the rooms.
            clock: Returns the server time in microseconds.
        """
        self._table = table
        self._clock = clock

    def _authorized_room(self, room_code: str, member_id: str, action: str) -> Room | None:
        room = self._table.lookup(room_code)
        if room is None:
            logger.debug("Ignoring %s for unknown room %s", action, room_code)
            return None
        try:
            room.require_admin(member_id)
        except UnauthorizedError as err:
            logger.debug("Ignoring %s: %s", action, err)
            return None
        return room

    async def load_track(
        self, room_code: str, member_id: str, source_url: str, source_name: str
    ) -> bool:
        """Load a new track, paused at the start, for every member of the room."""
        room = self._authorized_room(room_code, member_id, "track/load")
        if room is None:
            return False
        async with room.lock:
            # Authority may have changed while waiting for the lock
            if not room.is_admin(member_id):
                return False
            room.playback = PlaybackState(
                position_seconds=0.0,
                is_playing=False,
                server_timestamp_us=self._clock(),
                source_url=source_url,
                source_name=source_name,
            )
            recipients = room.connections()
            broadcast(TrackChangedMessage(TrackChangedPayload(source_url, source_name)), recipients)
            broadcast(RoomUpdateMessage(room.snapshot()), recipients)
        logger.info("Track loaded in room %s: %s", room.code, source_name)
        return True

    async def update_playback(
        self,
        room_code: str,
        member_id: str,
        position_seconds: float,
        *,
        is_playing: bool,
        client_timestamp_us: int,
        source_url: str | None = None,
        source_name: str | None = None,
    ) -> bool:
        """
        Record the admin's playback position and forward it to the listeners.

        The stored state is stamped with the server time of receipt, the client
        timestamp is only used for diagnostics.
        """
        room = self._authorized_room(room_code, member_id, "playback/update")
        if room is None:
            return False
        received_us = self._clock()
        async with room.lock:
            if not room.is_admin(member_id):
                return False
            current = room.playback
            room.playback = PlaybackState(
                position_seconds=max(position_seconds, 0.0),
                is_playing=is_playing,
                server_timestamp_us=received_us,
                source_url=source_url or (current.source_url if current else None),
                source_name=source_name or (current.source_name if current else None),
                live_stream=current.live_stream if current else False,
            )
            snapshot = PlaybackSnapshotPayload.from_state(room.playback, member_id)
            broadcast(PlaybackSnapshotMessage(snapshot), room.connections(exclude=member_id))
        logger.debug(
            "Playback in room %s at %.3fs (%s), client clock skew %d us",
            room.code,
            position_seconds,
            "playing" if is_playing else "paused",
            received_us - client_timestamp_us,
        )
        return True

    async def start_live_stream(self, room_code: str, member_id: str) -> bool:
        """Switch the room to live-stream mode."""
        room = self._authorized_room(room_code, member_id, "stream/start")
        if room is None:
            return False
        async with room.lock:
            if not room.is_admin(member_id):
                return False
            room.playback = PlaybackState(
                position_seconds=0.0,
                is_playing=True,
                server_timestamp_us=self._clock(),
                source_url=None,
                source_name=LIVE_STREAM_NAME,
                live_stream=True,
            )
            recipients = room.connections()
            broadcast(StreamStartedMessage(RoomCodePayload(room.code)), recipients)
            broadcast(RoomUpdateMessage(room.snapshot()), recipients)
        logger.info("Live stream started in room %s", room.code)
        return True

    async def stop_live_stream(self, room_code: str, member_id: str) -> bool:
        """End live-stream mode, leaving the room without playback."""
        room = self._authorized_room(room_code, member_id, "stream/stop")
        if room is None:
            return False
        async with room.lock:
            if not room.is_admin(member_id):
                return False
            room.playback = None
            recipients = room.connections()
            broadcast(StreamStoppedMessage(RoomCodePayload(room.code)), recipients)
            broadcast(RoomUpdateMessage(room.snapshot()), recipients)
        logger.info("Live stream stopped in room %s", room.code)
        return True
