"""Alignment of a listener's local playback with the admin's reported state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from aiosyncroom.models.playback import PlaybackSnapshotPayload, PlaybackState

from .transport import PlaybackTransport

DEFAULT_TOLERANCE_S = 0.5
DEFAULT_DAMPING_WINDOW_S = 0.1

logger = logging.getLogger(__name__)


class ReconcilerState(Enum):
    """States of the reconciler."""

    IDLE = "idle"
    """No correction in flight, the next snapshot is applied immediately."""
    CORRECTING = "correcting"
    """A command was just issued, snapshots are held back until the window elapses."""


class TransportAction(Enum):
    """Play state transition accompanying a seek."""

    PLAY = "play"
    PAUSE = "pause"


@dataclass(frozen=True, slots=True)
class SyncCommand:
    """Correction issued to the local transport."""

    seek_to: float
    """Position in seconds the transport is moved to."""
    action: TransportAction | None = None
    """Play state change, None to only seek."""


def compute_target_position(state: PlaybackState, received_at_us: int) -> float:
    """
    Estimate where the admin is at ``received_at_us``.

    Both timestamps are on the server clock. Negative delays, caused by clock
    estimation noise, are treated as zero.
    """
    if not state.is_playing:
        return state.position_seconds
    network_delay_s = max(received_at_us - state.server_timestamp_us, 0) / 1_000_000
    return state.position_seconds + network_delay_s


def plan_correction(
    state: PlaybackState,
    received_at_us: int,
    *,
    local_position: float,
    local_playing: bool,
    tolerance_s: float = DEFAULT_TOLERANCE_S,
) -> SyncCommand | None:
    """Decide which command brings local playback in line with ``state``."""
    target = compute_target_position(state, received_at_us)
    if state.is_playing and not local_playing:
        return SyncCommand(target, TransportAction.PLAY)
    if not state.is_playing and local_playing:
        return SyncCommand(target, TransportAction.PAUSE)
    if abs(local_position - target) > tolerance_s:
        return SyncCommand(target)
    return None


class SyncReconciler:
    """
    Two-state machine steering a listener's transport towards the admin's playback.

    After issuing a command the reconciler stays CORRECTING for the damping window.
    Snapshots received meanwhile only replace a single pending slot; once the window
    has elapsed (``expire``) the latest of them is reconciled. At most one command is
    therefore issued per window.

    All timestamps are microseconds on the server clock.
    """

    def __init__(
        self,
        transport: PlaybackTransport,
        *,
        member_id: str | None = None,
        tolerance_s: float = DEFAULT_TOLERANCE_S,
        damping_window_s: float = DEFAULT_DAMPING_WINDOW_S,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            transport: Local player to steer.
            member_id: Own member id, snapshots originating from it are ignored.
            tolerance_s: Drift accepted without seeking.
            damping_window_s: Time after a command during which no new command is issued.
        """
        if tolerance_s < 0:
            raise ValueError("tolerance_s must not be negative")
        if damping_window_s <= 0:
            raise ValueError("damping_window_s must be positive")
        self._transport = transport
        self.member_id = member_id
        self._tolerance_s = tolerance_s
        self._damping_us = round(damping_window_s * 1_000_000)
        self._state = ReconcilerState.IDLE
        self._deadline_us = 0
        self._pending: PlaybackState | None = None

    @property
    def state(self) -> ReconcilerState:
        """Current state of the machine."""
        return self._state

    @property
    def deadline_us(self) -> int:
        """Server time at which the current damping window ends."""
        return self._deadline_us

    @property
    def damping_window_s(self) -> float:
        """Length of the damping window in seconds."""
        return self._damping_us / 1_000_000

    @property
    def has_pending(self) -> bool:
        """True if a held back snapshot waits for the window to elapse."""
        return self._pending is not None

    def reset(self) -> None:
        """Return to IDLE and drop any pending snapshot."""
        self._state = ReconcilerState.IDLE
        self._deadline_us = 0
        self._pending = None

    def ingest(self, state: PlaybackState, received_at_us: int) -> SyncCommand | None:
        """
        Consume a snapshot received at ``received_at_us``.

        Returns:
            The command applied to the transport, or None.
        """
        if (
            isinstance(state, PlaybackSnapshotPayload)
            and self.member_id is not None
            and state.origin_member_id == self.member_id
        ):
            return None
        if self._state is ReconcilerState.CORRECTING and received_at_us >= self._deadline_us:
            self._state = ReconcilerState.IDLE
            self._pending = None
        if self._state is ReconcilerState.CORRECTING:
            logger.debug("Holding back snapshot while correcting")
            self._pending = state
            return None
        return self._reconcile(state, received_at_us)

    def expire(self, now_us: int) -> SyncCommand | None:
        """
        Leave CORRECTING if the damping window has elapsed.

        The latest held back snapshot, if any, is reconciled right away with its delay
        measured up to ``now_us``.
        """
        if self._state is not ReconcilerState.CORRECTING or now_us < self._deadline_us:
            return None
        self._state = ReconcilerState.IDLE
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        return self._reconcile(pending, now_us)

    def _reconcile(self, state: PlaybackState, now_us: int) -> SyncCommand | None:
        if state.live_stream:
            return None
        command = plan_correction(
            state,
            now_us,
            local_position=self._transport.position,
            local_playing=self._transport.is_playing,
            tolerance_s=self._tolerance_s,
        )
        if command is None:
            return None
        # Enter CORRECTING before touching the transport
        self._state = ReconcilerState.CORRECTING
        self._deadline_us = now_us + self._damping_us
        self._apply(command)
        return command

    def _apply(self, command: SyncCommand) -> None:
        logger.debug(
            "Correcting playback: seek to %.3fs%s",
            command.seek_to,
            f" and {command.action.value}" if command.action else "",
        )
        if command.action is TransportAction.PLAY:
            self._transport.seek(command.seek_to)
            self._transport.play()
        elif command.action is TransportAction.PAUSE:
            self._transport.pause()
            self._transport.seek(command.seek_to)
        else:
            self._transport.seek(command.seek_to)
