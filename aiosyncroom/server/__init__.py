"""
Syncroom server implementation hosting rooms of synchronized listeners.

SyncRoomServer is the authoritative side of the protocol, responsible for:
- Tracking rooms, their members and the admin of each room
- Accepting playback changes from admins only and fanning them out
- Relaying live audio chunks from admins to listeners
"""

__all__ = [
    "ChunkRelay",
    "ClientConnectedEvent",
    "ClientConnection",
    "ClientDisconnectedEvent",
    "Connection",
    "Member",
    "MemberJoinedEvent",
    "MemberLeftEvent",
    "MembershipManager",
    "PlaybackAuthority",
    "Room",
    "RoomClosedEvent",
    "RoomCreatedEvent",
    "RoomEvent",
    "RoomTable",
    "SyncRoomEvent",
    "SyncRoomServer",
    "broadcast",
    "normalize_room_code",
]

from .broadcast import Connection, broadcast
from .connection import ClientConnection
from .membership import (
    MemberJoinedEvent,
    MemberLeftEvent,
    MembershipManager,
    RoomClosedEvent,
    RoomCreatedEvent,
    RoomEvent,
)
from .playback import PlaybackAuthority
from .relay import ChunkRelay
from .room import Member, Room
from .server import ClientConnectedEvent, ClientDisconnectedEvent, SyncRoomEvent, SyncRoomServer
from .table import RoomTable, normalize_room_code
