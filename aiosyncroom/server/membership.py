"""Join, leave and disconnect handling for rooms."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from aiosyncroom.exceptions import InvariantViolationError, RoomNotFoundError
from aiosyncroom.models.core import (
    MemberInfo,
    MemberJoinedMessage,
    MemberLeftMessage,
    MemberLeftPayload,
    RoomClosedMessage,
    RoomClosedPayload,
    RoomInfo,
    RoomUpdateMessage,
)

from .broadcast import Connection, broadcast
from .room import Member, Room
from .table import RoomTable, normalize_room_code

logger = logging.getLogger(__name__)


class RoomEvent:
    """Base event type emitted by MembershipManager."""


@dataclass
class RoomCreatedEvent(RoomEvent):
    """A new room was opened."""

    room_code: str
    """Code of the new room."""


@dataclass
class MemberJoinedEvent(RoomEvent):
    """A listener joined a room."""

    room_code: str
    """Code of the room."""
    member_id: str
    """Identity of the new member."""


@dataclass
class MemberLeftEvent(RoomEvent):
    """A listener left a room that stays open."""

    room_code: str
    """Code of the room."""
    member_id: str
    """Identity of the departed member."""


@dataclass
class RoomClosedEvent(RoomEvent):
    """A room was torn down."""

    room_code: str
    """Code of the closed room."""
    reason: str
    """Why the room was closed."""


class MembershipManager:
    """
    Applies membership changes to the rooms of a RoomTable.

    Every change to a room happens while holding that room's lock, and the resulting
    notifications are queued before the lock is released. Members therefore observe
    notifications of one room in the order the changes were applied.
    """

    def __init__(
        self,
        table: RoomTable,
        *,
        on_event: Callable[[RoomEvent], None] | None = None,
    ) -> None:
        """Initialize the manager for the given table."""
        self._table = table
        self._on_event = on_event

    @property
    def table(self) -> RoomTable:
        """The table this manager operates on."""
        return self._table

    def _signal_event(self, event: RoomEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    async def create_room(
        self, room_name: str, user_name: str, connection: Connection
    ) -> tuple[RoomInfo, MemberInfo]:
        """
        Open a new room with the caller as its admin.

        A connection that already participates in a room leaves it first.
        """
        await self._release_connection(connection)
        room, admin = self._table.create(room_name, user_name, connection)
        async with room.lock:
            snapshot = room.snapshot()
        self._signal_event(RoomCreatedEvent(room.code))
        return snapshot, admin.to_info()

    async def join(
        self, room_code: str, user_name: str, connection: Connection
    ) -> tuple[RoomInfo, MemberInfo]:
        """
        Add the caller to an existing room as a listener.

        Existing members are notified, the joiner receives the returned snapshot
        including the current playback state.

        Raises:
            RoomNotFoundError: If no open room has this code.
        """
        await self._release_connection(connection)
        room = self._table.lookup(room_code)
        if room is None:
            logger.info("Join of unknown room %s by %s", normalize_room_code(room_code), user_name)
            raise RoomNotFoundError(normalize_room_code(room_code))

        async with room.lock:
            if room.closed:
                # Torn down while we were waiting for the lock
                raise RoomNotFoundError(room.code)
            member = Member(
                member_id=str(uuid.uuid4()),
                name=user_name,
                is_admin=False,
                connection=connection,
            )
            room.add_member(member)
            self._table.bind(connection.connection_id, room.code, member.member_id)
            if not self._ensure_consistent_locked(room):
                raise RoomNotFoundError(room.code)
            snapshot = room.snapshot()
            others = room.connections(exclude=member.member_id)
            broadcast(MemberJoinedMessage(member.to_info()), others)
            broadcast(RoomUpdateMessage(snapshot), others)

        logger.info("%s joined room %s as %s", user_name, room.code, member.member_id)
        self._signal_event(MemberJoinedEvent(room.code, member.member_id))
        return snapshot, member.to_info()

    async def leave(self, room_code: str, member_id: str) -> bool:
        """
        Remove a member from a room.

        If the member is the admin, the room is torn down and the remaining members
        receive room/closed. Leaving a room one is not part of does nothing.

        Returns:
            True if the member was removed, False if it was already gone.
        """
        room = self._table.lookup(room_code)
        if room is None:
            logger.debug("Leave for unknown room %s ignored", room_code)
            return False

        async with room.lock:
            member = room.remove_member(member_id)
            if member is None:
                logger.debug("Member %s already left room %s", member_id, room.code)
                return False
            self._table.unbind(member.connection.connection_id, member_id)
            logger.info("%s left room %s", member.name, room.code)

            if member.is_admin or len(room) == 0:
                self._teardown_locked(room, "admin left" if member.is_admin else "room empty")
                return True

            broadcast(MemberLeftMessage(MemberLeftPayload(member_id)), room.connections())
            if self._ensure_consistent_locked(room):
                broadcast(RoomUpdateMessage(room.snapshot()), room.connections())

        self._signal_event(MemberLeftEvent(room.code, member_id))
        return True

    async def disconnect(self, connection: Connection) -> bool:
        """
        Handle the loss of a connection.

        Behaves like leave for the member the connection was bound to. Connections
        that never joined a room are ignored.
        """
        binding = self._table.resolve(connection.connection_id)
        if binding is None:
            return False
        try:
            return await self.leave(binding.room_code, binding.member_id)
        finally:
            self._table.unbind(connection.connection_id, binding.member_id)

    async def close_all(self) -> None:
        """Tear down every open room, used when the server shuts down."""
        for room in self._table.rooms:
            async with room.lock:
                if not room.closed:
                    self._teardown_locked(room, "server shutting down")

    async def _release_connection(self, connection: Connection) -> None:
        binding = self._table.resolve(connection.connection_id)
        if binding is None:
            return
        logger.debug(
            "Connection %s switches rooms, leaving %s first",
            connection.connection_id,
            binding.room_code,
        )
        await self.leave(binding.room_code, binding.member_id)
        self._table.unbind(connection.connection_id, binding.member_id)

    def _ensure_consistent_locked(self, room: Room) -> bool:
        """Validate the room, tearing it down if it is broken. Must hold the room lock."""
        try:
            room.validate()
        except InvariantViolationError:
            logger.exception("Invariant violated, closing room %s", room.code)
            self._teardown_locked(room, "invariant violation")
            return False
        return True

    def _teardown_locked(self, room: Room, reason: str) -> None:
        """Close and unregister a room, notifying whoever is left. Must hold the room lock."""
        remaining = room.close()
        self._table.remove(room.code)
        broadcast(
            RoomClosedMessage(RoomClosedPayload(room.code)),
            [member.connection for member in remaining],
        )
        logger.info("Room %s closed (%s)", room.code, reason)
        self._signal_event(RoomClosedEvent(room.code, reason))
