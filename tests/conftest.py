"""Shared pytest fixtures for syncroom tests."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import pytest

from aiosyncroom.models import ServerMessage
from aiosyncroom.server import MembershipManager, PlaybackAuthority, RoomTable

_ids = itertools.count()


class DummyConnection:
    """Records every message queued for it."""

    def __init__(self, name: str | None = None, *, maxsize: int = 0) -> None:
        self._connection_id = name or f"conn-{next(_ids)}"
        self.queue: asyncio.Queue[ServerMessage | bytes] = asyncio.Queue(maxsize=maxsize)
        self.sent: list[ServerMessage | bytes] = []
        self.closed = False

    @property
    def connection_id(self) -> str:
        return self._connection_id

    def send_message(self, message: ServerMessage | bytes) -> None:
        if self.closed:
            raise ConnectionResetError(f"{self._connection_id} is closed")
        self.queue.put_nowait(message)
        self.sent.append(message)

    def of_type(self, message_type: type[Any]) -> list[Any]:
        return [message for message in self.sent if isinstance(message, message_type)]

    def types(self) -> list[str]:
        return [
            "binary" if isinstance(message, bytes) else message.type for message in self.sent
        ]


class FakeClock:
    """Server clock in microseconds that only moves when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, us: int) -> None:
        self.now += us


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def table() -> RoomTable:
    """A fresh room table per test."""

    return RoomTable()


@pytest.fixture()
def membership(table: RoomTable) -> MembershipManager:
    return MembershipManager(table)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def playback(table: RoomTable, clock: FakeClock) -> PlaybackAuthority:
    return PlaybackAuthority(table, clock)
