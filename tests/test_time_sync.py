from __future__ import annotations

import pytest

from aiosyncroom.client import ClockOffsetFilter


def exchange(
    time_filter: ClockOffsetFilter, sent: int, offset: int, out: int, back: int, processing: int = 0
) -> None:
    """Feed an exchange with the given one-way delays and true offset."""
    server_received = sent + out + offset
    server_transmitted = server_received + processing
    client_received = server_transmitted - offset + back
    time_filter.add_measurement(sent, server_received, server_transmitted, client_received)


def test_symmetric_exchange_recovers_offset():
    time_filter = ClockOffsetFilter()

    exchange(time_filter, 1_000_000, offset=5_000_000, out=2_000, back=2_000, processing=300)

    assert time_filter.offset == 5_000_000
    assert time_filter.error == 2_000


def test_needs_two_samples_before_ready():
    time_filter = ClockOffsetFilter()
    assert not time_filter.ready

    exchange(time_filter, 0, offset=1_000, out=100, back=100)
    assert not time_filter.ready

    exchange(time_filter, 10_000, offset=1_000, out=100, back=100)
    assert time_filter.ready


def test_lowest_round_trip_sample_wins():
    time_filter = ClockOffsetFilter()

    # Asymmetric and slow, distorted estimate
    exchange(time_filter, 0, offset=1_000_000, out=40_000, back=2_000)
    exchange(time_filter, 100_000, offset=1_000_000, out=500, back=500)
    exchange(time_filter, 200_000, offset=1_000_000, out=2_000, back=30_000)

    assert time_filter.offset == 1_000_000


def test_old_samples_fall_out_of_the_window():
    time_filter = ClockOffsetFilter(window=2)

    exchange(time_filter, 0, offset=0, out=10, back=10)
    exchange(time_filter, 1_000, offset=50_000, out=1_000, back=1_000)
    exchange(time_filter, 2_000, offset=50_000, out=1_000, back=1_000)

    assert time_filter.offset == 50_000


def test_impossible_samples_are_discarded():
    time_filter = ClockOffsetFilter()

    time_filter.add_measurement(1_000, 5_000, 6_000, 900)

    assert time_filter.error == float("inf")
    assert time_filter.offset == 0.0


def test_conversions_are_inverse():
    time_filter = ClockOffsetFilter()
    exchange(time_filter, 0, offset=-3_000_000, out=100, back=100)
    exchange(time_filter, 10_000, offset=-3_000_000, out=100, back=100)

    assert time_filter.compute_server_time(10_000_000) == 7_000_000
    assert time_filter.compute_client_time(7_000_000) == 10_000_000


def test_reset_forgets_samples():
    time_filter = ClockOffsetFilter()
    exchange(time_filter, 0, offset=1, out=1, back=1)
    exchange(time_filter, 10, offset=1, out=1, back=1)

    time_filter.reset()

    assert not time_filter.ready


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        ClockOffsetFilter(window=0)
