"""Syncroom: rooms of listeners following an admin's playback."""

from __future__ import annotations

# Re-export client library for easy import
from aiosyncroom.client import (
    ClockOffsetFilter,
    PlaybackTransport,
    ServerInfo,
    SyncCommand,
    SyncReconciler,
    SyncRoomClient,
    VirtualTransport,
)
from aiosyncroom.exceptions import (
    InvariantViolationError,
    RoomCodeExhaustedError,
    RoomNotFoundError,
    SyncRoomError,
    UnauthorizedError,
)

__all__ = [
    "ClockOffsetFilter",
    "InvariantViolationError",
    "PlaybackTransport",
    "RoomCodeExhaustedError",
    "RoomNotFoundError",
    "ServerInfo",
    "SyncCommand",
    "SyncReconciler",
    "SyncRoomClient",
    "SyncRoomError",
    "UnauthorizedError",
    "VirtualTransport",
]
