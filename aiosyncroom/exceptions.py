"""Errors raised by the syncroom server and client."""

from __future__ import annotations


class SyncRoomError(Exception):
    """Base class for all syncroom errors."""


class RoomNotFoundError(SyncRoomError):
    """The room code did not resolve to an open room."""

    def __init__(self, room_code: str) -> None:
        """Initialize the error for the given room code."""
        super().__init__(f"Room '{room_code}' not found")
        self.room_code = room_code


class UnauthorizedError(SyncRoomError):
    """A member that is not the admin attempted a privileged operation."""

    def __init__(self, room_code: str, member_id: str) -> None:
        """Initialize the error for the offending member."""
        super().__init__(f"Member {member_id} is not the admin of room {room_code}")
        self.room_code = room_code
        self.member_id = member_id


class InvariantViolationError(SyncRoomError):
    """A room was found in a state that must never occur."""


class RoomCodeExhaustedError(SyncRoomError):
    """No unused room code could be generated."""
