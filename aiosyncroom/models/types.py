"""Models for enum types used by syncroom."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for client messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for server messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Enums


class BinaryMessageType(Enum):
    """Enum for Binary Message Types."""

    AUDIO_CHUNK = 0
    """Opaque encoded audio segment of a live stream."""


class ErrorKind(Enum):
    """Failures reported back to the client that issued a request."""

    ROOM_NOT_FOUND = "room_not_found"
    """The room code did not resolve to an existing room."""
    INVALID_REQUEST = "invalid_request"
    """The request could not be processed on this connection."""


class PlaybackMode(Enum):
    """What the admin of a room is currently sharing."""

    IDLE = "idle"
    """Nothing loaded yet."""
    TRACK = "track"
    """A URL addressable track."""
    LIVE_STREAM = "live-stream"
    """Audio relayed as opaque chunks."""
