"""Core messages for the syncroom protocol.

This module contains the messages that establish communication between clients and
the server and manage room membership. These cover the initial handshake, ongoing
clock synchronization, room creation and joining, and membership notifications.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .playback import PlaybackState
from .types import ClientMessage, ErrorKind, ServerMessage


# Shared room payloads
@dataclass
class MemberInfo(DataClassORJSONMixin):
    """Public description of a room member."""

    member_id: str
    """Identity of the member, unique within the room."""
    name: str
    """Display name claimed by the member."""
    is_admin: bool
    """True only for the member that created the room."""


@dataclass
class RoomInfo(DataClassORJSONMixin):
    """Consistent snapshot of a room."""

    room_code: str
    """Short code identifying the room."""
    name: str
    """Display name of the room."""
    admin_id: str
    """Member id of the admin."""
    members: list[MemberInfo]
    """All current members, admin included."""
    playback: PlaybackState | None = None
    """Current playback state, None until the admin loads a track or starts a stream."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    def get_member(self, member_id: str) -> MemberInfo | None:
        """Return the member with the given id, if present."""
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None


# Client -> Server: client/time
@dataclass
class ClientTimePayload(DataClassORJSONMixin):
    """Timing information from the client."""

    client_transmitted: int
    """Client's internal clock timestamp in microseconds."""


@dataclass
class ClientTimeMessage(ClientMessage):
    """Message sent by the client for time synchronization."""

    payload: ClientTimePayload
    type: Literal["client/time"] = "client/time"


# Client -> Server: room/create
@dataclass
class RoomCreatePayload(DataClassORJSONMixin):
    """Request to open a new room with the sender as admin."""

    room_name: str
    """Display name of the new room."""
    user_name: str
    """Display name of the creator."""


@dataclass
class RoomCreateMessage(ClientMessage):
    """Message sent by the client to create a room."""

    payload: RoomCreatePayload
    type: Literal["room/create"] = "room/create"


# Client -> Server: room/join
@dataclass
class RoomJoinPayload(DataClassORJSONMixin):
    """Request to join an existing room as listener."""

    room_code: str
    """Code of the room, matched case-insensitively."""
    user_name: str
    """Display name of the joining member."""


@dataclass
class RoomJoinMessage(ClientMessage):
    """Message sent by the client to join a room."""

    payload: RoomJoinPayload
    type: Literal["room/join"] = "room/join"


# Client -> Server: room/leave
@dataclass
class RoomLeavePayload(DataClassORJSONMixin):
    """Request to leave a room."""

    room_code: str
    """Code of the room to leave."""


@dataclass
class RoomLeaveMessage(ClientMessage):
    """Message sent by the client to leave its room."""

    payload: RoomLeavePayload
    type: Literal["room/leave"] = "room/leave"


# Server -> Client: server/hello
@dataclass
class ServerHelloPayload(DataClassORJSONMixin):
    """Information about the server."""

    server_id: str
    """Identifier of the server."""
    name: str
    """Friendly name of the server."""
    version: int
    """Latest supported version of the protocol."""
    connection_id: str
    """Identity the server assigned to this connection."""


@dataclass
class ServerHelloMessage(ServerMessage):
    """Message sent by the server to identify itself."""

    payload: ServerHelloPayload
    type: Literal["server/hello"] = "server/hello"


# Server -> Client: server/time
@dataclass
class ServerTimePayload(DataClassORJSONMixin):
    """Timing information from the server."""

    client_transmitted: int
    """Client's internal clock timestamp received in the client/time message."""
    server_received: int
    """Timestamp that the server received the client/time message in microseconds."""
    server_transmitted: int
    """Timestamp that the server transmitted this message in microseconds."""


@dataclass
class ServerTimeMessage(ServerMessage):
    """Message sent by the server for time synchronization."""

    payload: ServerTimePayload
    type: Literal["server/time"] = "server/time"


# Server -> Client: room/created
@dataclass
class RoomCreatedPayload(DataClassORJSONMixin):
    """Result of a successful room/create."""

    room: RoomInfo
    """Snapshot of the new room."""
    member: MemberInfo
    """The admin member created for the sender."""


@dataclass
class RoomCreatedMessage(ServerMessage):
    """Message sent to the creator of a room."""

    payload: RoomCreatedPayload
    type: Literal["room/created"] = "room/created"


# Server -> Client: room/joined
@dataclass
class RoomJoinedPayload(DataClassORJSONMixin):
    """Result of a successful room/join."""

    room: RoomInfo
    """Full snapshot of the room, including current playback."""
    member: MemberInfo
    """The member created for the sender."""


@dataclass
class RoomJoinedMessage(ServerMessage):
    """Message sent to a client that joined a room."""

    payload: RoomJoinedPayload
    type: Literal["room/joined"] = "room/joined"


# Server -> Client: room/error
@dataclass
class RoomErrorPayload(DataClassORJSONMixin):
    """Failure of a request issued by this client."""

    kind: ErrorKind
    """Machine readable failure kind."""
    message: str
    """Human readable description."""


@dataclass
class RoomErrorMessage(ServerMessage):
    """Message sent to the client whose request failed."""

    payload: RoomErrorPayload
    type: Literal["room/error"] = "room/error"


# Server -> Client: room/member-joined
@dataclass
class MemberJoinedMessage(ServerMessage):
    """Message sent to existing members when someone joins."""

    payload: MemberInfo
    type: Literal["room/member-joined"] = "room/member-joined"


# Server -> Client: room/member-left
@dataclass
class MemberLeftPayload(DataClassORJSONMixin):
    """Member that left the room."""

    member_id: str
    """Identity of the departed member."""


@dataclass
class MemberLeftMessage(ServerMessage):
    """Message sent to remaining members when someone leaves."""

    payload: MemberLeftPayload
    type: Literal["room/member-left"] = "room/member-left"


# Server -> Client: room/update
@dataclass
class RoomUpdateMessage(ServerMessage):
    """Message carrying a fresh room snapshot."""

    payload: RoomInfo
    type: Literal["room/update"] = "room/update"


# Server -> Client: room/closed
@dataclass
class RoomClosedPayload(DataClassORJSONMixin):
    """Room that was torn down."""

    room_code: str
    """Code of the closed room."""


@dataclass
class RoomClosedMessage(ServerMessage):
    """Message sent to remaining members when the room ends."""

    payload: RoomClosedPayload
    type: Literal["room/closed"] = "room/closed"
