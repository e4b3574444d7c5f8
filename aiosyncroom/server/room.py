"""Authoritative state of a single room."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass

from aiosyncroom.exceptions import InvariantViolationError, UnauthorizedError
from aiosyncroom.models.core import MemberInfo, RoomInfo
from aiosyncroom.models.playback import PlaybackState

from .broadcast import Connection

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """A client that is part of a room."""

    member_id: str
    name: str
    is_admin: bool
    connection: Connection
    """Back-reference used for sending only, the room never owns the connection."""

    def to_info(self) -> MemberInfo:
        """Public description without the connection handle."""
        return MemberInfo(member_id=self.member_id, name=self.name, is_admin=self.is_admin)


class Room:
    """
    A room grouping one admin and any number of listeners.

    All mutations must happen while holding ``lock``. Reads done under the same lock
    (``snapshot``, ``connections``) therefore reflect a consistent post-mutation state.
    """

    _code: str
    """Normalized room code."""
    _name: str
    """Display name, immutable."""
    _admin_id: str
    """Member id of the admin, fixed at creation."""
    _members: dict[str, Member]
    """Mapping of member ids to members."""
    playback: PlaybackState | None
    """Current playback, None until the admin loads a track or starts a stream."""
    lock: asyncio.Lock
    """Serializes mutations on this room."""
    closed: bool
    """Set once the room was torn down."""

    def __init__(self, code: str, name: str, admin: Member) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Rooms are created through RoomTable.create.
        """
        if not admin.is_admin:
            raise ValueError("The first member of a room must be its admin")
        self._code = code
        self._name = name
        self._admin_id = admin.member_id
        self._members = {admin.member_id: admin}
        self.playback = None
        self.lock = asyncio.Lock()
        self.closed = False

    @property
    def code(self) -> str:
        """Short code identifying this room."""
        return self._code

    @property
    def name(self) -> str:
        """Display name of this room."""
        return self._name

    @property
    def admin_id(self) -> str:
        """Member id of the admin."""
        return self._admin_id

    @property
    def members(self) -> list[Member]:
        """All members of this room, admin included."""
        return list(self._members.values())

    def __len__(self) -> int:
        """Return the number of members."""
        return len(self._members)

    def get_member(self, member_id: str) -> Member | None:
        """Get the member with the given id."""
        return self._members.get(member_id)

    def add_member(self, member: Member) -> None:
        """Add a listener to this room."""
        if member.is_admin:
            raise ValueError("A room has exactly one admin")
        self._members[member.member_id] = member

    def remove_member(self, member_id: str) -> Member | None:
        """Remove a member, returning None if it was not part of the room."""
        return self._members.pop(member_id, None)

    def is_admin(self, member_id: str) -> bool:
        """Return True if ``member_id`` is the current admin of this open room."""
        return not self.closed and member_id == self._admin_id and member_id in self._members

    def require_admin(self, member_id: str) -> None:
        """Raise UnauthorizedError unless ``member_id`` is the current admin."""
        if not self.is_admin(member_id):
            raise UnauthorizedError(self._code, member_id)

    def connections(self, *, exclude: str | None = None) -> list[Connection]:
        """Connections of all members except the member with id ``exclude``."""
        return [
            member.connection
            for member_id, member in self._members.items()
            if member_id != exclude
        ]

    def snapshot(self) -> RoomInfo:
        """Build an immutable snapshot of the room for broadcasting."""
        return RoomInfo(
            room_code=self._code,
            name=self._name,
            admin_id=self._admin_id,
            members=[member.to_info() for member in self._members.values()],
            playback=dataclasses.replace(self.playback) if self.playback else None,
        )

    def validate(self) -> None:
        """Raise InvariantViolationError if the room is in an impossible state."""
        if not self._members:
            raise InvariantViolationError(f"Room {self._code} has no members")
        admins = [member for member in self._members.values() if member.is_admin]
        if len(admins) != 1:
            raise InvariantViolationError(
                f"Room {self._code} has {len(admins)} admins instead of exactly one"
            )
        if admins[0].member_id != self._admin_id:
            raise InvariantViolationError(f"Room {self._code} lost track of its admin")

    def close(self) -> list[Member]:
        """Mark the room closed and drop all members, returning the ones still present."""
        self.closed = True
        remaining = list(self._members.values())
        self._members.clear()
        self.playback = None
        logger.debug("Room %s closed with %d remaining member(s)", self._code, len(remaining))
        return remaining
