"""Forwarding of live audio chunks from the admin to the listeners."""

from __future__ import annotations

import logging

from aiosyncroom.exceptions import UnauthorizedError
from aiosyncroom.models import BinaryMessageType, encode_frame

from .broadcast import broadcast
from .table import RoomTable

logger = logging.getLogger(__name__)


class ChunkRelay:
    """
    Stateless fan-out of opaque audio segments.

    Segments are never decoded, buffered or retried. They are queued for each
    listener in the order they arrive, so listeners receive the chunks of one admin
    in order. A listener with a full outgoing queue simply loses that segment.
    """

    def __init__(self, table: RoomTable) -> None:
        """Initialize the relay for the rooms of ``table``."""
        self._table = table

    def relay_chunk(
        self, room_code: str, member_id: str, segment: bytes, client_timestamp_us: int
    ) -> int:
        """
        Forward an encoded segment from the admin to all other members.

        Args:
            room_code: Room the admin streams to.
            member_id: Sender, must be the admin of the room.
            segment: Encoded audio, forwarded verbatim.
            client_timestamp_us: Capture time reported by the admin.

        Returns:
            The number of listeners the segment was queued for.
        """
        room = self._table.lookup(room_code)
        if room is None:
            logger.debug("Dropping audio chunk for unknown room %s", room_code)
            return 0
        try:
            room.require_admin(member_id)
        except UnauthorizedError as err:
            logger.debug("Dropping audio chunk: %s", err)
            return 0
        if room.playback is None or not room.playback.live_stream:
            logger.debug("Relaying audio chunk in room %s outside of live-stream mode", room.code)

        # Encoded once so every listener gets identical bytes
        frame = encode_frame(BinaryMessageType.AUDIO_CHUNK, client_timestamp_us, segment)
        return broadcast(frame, room.connections(exclude=member_id))
