"""Local playback transports driven by the sync reconciler."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol


class PlaybackTransport(Protocol):
    """Minimal control surface of a local player."""

    @property
    def position(self) -> float:
        """Current playback position in seconds."""
        ...

    @property
    def is_playing(self) -> bool:
        """Whether playback is currently running."""
        ...

    def seek(self, position: float) -> None:
        """Jump to ``position`` seconds."""
        ...

    def play(self) -> None:
        """Start or resume playback."""
        ...

    def pause(self) -> None:
        """Pause playback, keeping the position."""
        ...


class VirtualTransport:
    """A player without audio output whose position follows a clock.

    Used by the CLI and by tests wherever only the timeline matters.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize a paused transport at position 0."""
        self._clock = clock
        self._base_position = 0.0
        self._started_at = 0.0
        self._playing = False
        self.source_url: str | None = None
        self.source_name: str | None = None

    @property
    def position(self) -> float:
        """Current playback position in seconds."""
        if self._playing:
            return self._base_position + (self._clock() - self._started_at)
        return self._base_position

    @property
    def is_playing(self) -> bool:
        """Whether playback is currently running."""
        return self._playing

    def load(self, source_url: str | None, source_name: str | None) -> None:
        """Switch to a new source, paused at the start."""
        self.source_url = source_url
        self.source_name = source_name
        self._base_position = 0.0
        self._playing = False

    def seek(self, position: float) -> None:
        """Jump to ``position`` seconds."""
        self._base_position = max(position, 0.0)
        self._started_at = self._clock()

    def play(self) -> None:
        """Start or resume playback."""
        if self._playing:
            return
        self._started_at = self._clock()
        self._playing = True

    def pause(self) -> None:
        """Pause playback, keeping the position."""
        if not self._playing:
            return
        self._base_position = self.position
        self._playing = False
