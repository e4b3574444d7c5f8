"""Registry of all open rooms of a server."""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from collections.abc import Callable
from typing import NamedTuple

from aiosyncroom.exceptions import RoomCodeExhaustedError

from .broadcast import Connection
from .room import Member, Room

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 64

logger = logging.getLogger(__name__)


def normalize_room_code(code: str) -> str:
    """Room codes are case-insensitive, store and compare them uppercase."""
    return code.strip().upper()


def generate_room_code() -> str:
    """Draw a random room code (36^6 possible values)."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


class ConnectionBinding(NamedTuple):
    """Where a connection currently participates."""

    room_code: str
    member_id: str


class RoomTable:
    """
    Owns every Room of a server and the connection back-references.

    None of the methods await, so each call is atomic on the event loop. Mutations of
    a single room's membership are serialized by the room's own lock instead.
    """

    _rooms: dict[str, Room]
    """Mapping of normalized room codes to rooms."""
    _bindings: dict[str, ConnectionBinding]
    """Mapping of connection ids to the room and member they belong to."""
    _code_factory: Callable[[], str]
    """Source of new room codes."""

    def __init__(self, *, code_factory: Callable[[], str] | None = None) -> None:
        """Initialize an empty table."""
        self._rooms = {}
        self._bindings = {}
        self._code_factory = code_factory or generate_room_code

    def _fresh_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = normalize_room_code(self._code_factory())
            if code not in self._rooms:
                return code
            logger.debug("Room code %s already taken, retrying", code)
        raise RoomCodeExhaustedError(
            f"Could not find an unused room code after {MAX_CODE_ATTEMPTS} attempts"
        )

    def create(
        self, room_name: str, creator_name: str, connection: Connection
    ) -> tuple[Room, Member]:
        """
        Create a room with the creator as its admin and register it.

        Args:
            room_name: Display name of the room.
            creator_name: Display name of the admin.
            connection: Connection of the admin, bound to the new room.

        Raises:
            RoomCodeExhaustedError: If no unused code could be drawn.
        """
        code = self._fresh_code()
        admin = Member(
            member_id=str(uuid.uuid4()),
            name=creator_name,
            is_admin=True,
            connection=connection,
        )
        room = Room(code, room_name, admin)
        self._rooms[code] = room
        self.bind(connection.connection_id, code, admin.member_id)
        logger.info("Room %s (%s) created by %s", code, room_name, creator_name)
        return room, admin

    def lookup(self, code: str) -> Room | None:
        """Get the room with the given code, ignoring case."""
        return self._rooms.get(normalize_room_code(code))

    def remove(self, code: str) -> Room | None:
        """
        Unregister a room and every connection bound to it.

        Removing an unknown room does nothing.
        """
        normalized = normalize_room_code(code)
        room = self._rooms.pop(normalized, None)
        if room is None:
            return None
        stale = [
            connection_id
            for connection_id, binding in self._bindings.items()
            if binding.room_code == normalized
        ]
        for connection_id in stale:
            del self._bindings[connection_id]
        logger.debug("Room %s removed, released %d connection(s)", normalized, len(stale))
        return room

    def bind(self, connection_id: str, room_code: str, member_id: str) -> None:
        """Remember that a connection participates in a room as the given member."""
        self._bindings[connection_id] = ConnectionBinding(
            normalize_room_code(room_code), member_id
        )

    def unbind(self, connection_id: str, member_id: str | None = None) -> None:
        """
        Forget the binding of a connection.

        If ``member_id`` is given, the binding is only dropped while it still points
        at that member.
        """
        binding = self._bindings.get(connection_id)
        if binding is None:
            return
        if member_id is not None and binding.member_id != member_id:
            return
        del self._bindings[connection_id]

    def resolve(self, connection_id: str) -> ConnectionBinding | None:
        """Get the room and member a connection participates as, if any."""
        return self._bindings.get(connection_id)

    @property
    def rooms(self) -> list[Room]:
        """All open rooms."""
        return list(self._rooms.values())

    def __len__(self) -> int:
        """Return the number of open rooms."""
        return len(self._rooms)

    def __contains__(self, code: object) -> bool:
        """Return True if a room with this code is open."""
        return isinstance(code, str) and normalize_room_code(code) in self._rooms
