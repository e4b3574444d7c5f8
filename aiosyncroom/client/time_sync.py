"""Estimation of the offset between the local clock and the server clock."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

DEFAULT_WINDOW = 8
MIN_SAMPLES = 2
MAX_ROUND_TRIP_US = 2_000_000

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClockSample:
    """A single request/response measurement."""

    offset: float
    """Server time minus client time in microseconds."""
    round_trip: float
    """Network round trip in microseconds, excluding server processing time."""


class ClockOffsetFilter:
    """
    Track the server clock offset from client/time exchanges.

    The filter keeps the last ``window`` samples and trusts the one with the
    smallest round trip, whose offset is least distorted by asymmetric delays.
    """

    def __init__(
        self, window: int = DEFAULT_WINDOW, max_round_trip_us: int = MAX_ROUND_TRIP_US
    ) -> None:
        """Initialise an empty filter."""
        if window < 1:
            raise ValueError("window must be at least 1")
        self._samples: deque[ClockSample] = deque(maxlen=window)
        self._max_round_trip_us = max_round_trip_us
        self._best: ClockSample | None = None

    def reset(self) -> None:
        """Forget all samples."""
        self._samples.clear()
        self._best = None

    def add_measurement(
        self,
        client_transmitted: int,
        server_received: int,
        server_transmitted: int,
        client_received: int,
    ) -> None:
        """Add the four timestamps of one exchange."""
        offset = (
            (server_received - client_transmitted) + (server_transmitted - client_received)
        ) / 2
        round_trip = (client_received - client_transmitted) - (
            server_transmitted - server_received
        )
        if round_trip < 0 or round_trip > self._max_round_trip_us:
            logger.debug("Discarding clock sample with round trip %d us", round_trip)
            return
        self._samples.append(ClockSample(offset, round_trip))
        self._best = min(self._samples, key=lambda sample: sample.round_trip)

    @property
    def ready(self) -> bool:
        """True once enough samples have been collected."""
        return len(self._samples) >= MIN_SAMPLES

    @property
    def offset(self) -> float:
        """Estimated server time minus client time in microseconds."""
        return self._best.offset if self._best else 0.0

    @property
    def error(self) -> float:
        """Upper bound of the offset error in microseconds."""
        return self._best.round_trip / 2 if self._best else float("inf")

    def compute_server_time(self, client_time: int) -> int:
        """Convert a client timestamp into the server clock domain."""
        return round(client_time + self.offset)

    def compute_client_time(self, server_time: int) -> int:
        """Convert a server timestamp into the client clock domain."""
        return round(server_time - self.offset)
