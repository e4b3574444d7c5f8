"""Public interface for the syncroom client package."""

from .client import (
    AudioChunkCallback,
    CorrectionCallback,
    MemberJoinedCallback,
    MemberLeftCallback,
    PlaybackSnapshotCallback,
    RoomClosedCallback,
    RoomUpdateCallback,
    ServerInfo,
    StreamStateCallback,
    SyncRoomClient,
    TrackChangedCallback,
)
from .reconciler import ReconcilerState, SyncCommand, SyncReconciler, TransportAction
from .time_sync import ClockOffsetFilter
from .transport import PlaybackTransport, VirtualTransport

__all__ = [
    "AudioChunkCallback",
    "ClockOffsetFilter",
    "CorrectionCallback",
    "MemberJoinedCallback",
    "MemberLeftCallback",
    "PlaybackSnapshotCallback",
    "PlaybackTransport",
    "ReconcilerState",
    "RoomClosedCallback",
    "RoomUpdateCallback",
    "ServerInfo",
    "StreamStateCallback",
    "SyncCommand",
    "SyncReconciler",
    "SyncRoomClient",
    "TrackChangedCallback",
    "TransportAction",
    "VirtualTransport",
]
