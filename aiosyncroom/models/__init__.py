"""Models for the syncroom protocol."""

from __future__ import annotations

import struct
from typing import NamedTuple

from . import core, playback, types
from .types import BinaryMessageType, ClientMessage, ErrorKind, PlaybackMode, ServerMessage

__all__ = [
    "FRAME_HEADER",
    "FRAME_HEADER_SIZE",
    "BinaryMessageType",
    "ClientMessage",
    "ErrorKind",
    "Frame",
    "PlaybackMode",
    "ServerMessage",
    "core",
    "decode_frame",
    "encode_frame",
    "playback",
    "types",
]

# One byte message type followed by an unsigned 64 bit timestamp, big-endian
FRAME_HEADER = struct.Struct(">BQ")
FRAME_HEADER_SIZE = FRAME_HEADER.size


class Frame(NamedTuple):
    """A decoded binary websocket frame."""

    message_type: int
    timestamp_us: int
    payload: bytes


def encode_frame(message_type: BinaryMessageType, timestamp_us: int, payload: bytes = b"") -> bytes:
    """Prefix ``payload`` with a frame header. Negative timestamps are stored as 0."""
    return FRAME_HEADER.pack(message_type.value, max(timestamp_us, 0)) + payload


def decode_frame(data: bytes) -> Frame:
    """
    Split a binary frame into its header fields and payload.

    Raises:
        ValueError: If ``data`` cannot hold a complete header.
    """
    if len(data) < FRAME_HEADER_SIZE:
        raise ValueError(f"Binary frame too short: {len(data)} < {FRAME_HEADER_SIZE} bytes")
    message_type, timestamp_us = FRAME_HEADER.unpack_from(data)
    return Frame(message_type, timestamp_us, bytes(data[FRAME_HEADER_SIZE:]))
