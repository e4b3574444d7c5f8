from __future__ import annotations

import pytest
from conftest import DummyConnection

from aiosyncroom.exceptions import RoomCodeExhaustedError
from aiosyncroom.server import RoomTable
from aiosyncroom.server.table import (
    MAX_CODE_ATTEMPTS,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    generate_room_code,
)


def test_generated_codes_use_the_room_code_alphabet():
    for _ in range(50):
        code = generate_room_code()
        assert len(code) == ROOM_CODE_LENGTH
        assert set(code) <= set(ROOM_CODE_ALPHABET)


def test_create_registers_room_with_admin_bound(table: RoomTable):
    connection = DummyConnection()

    room, admin = table.create("Movie Night", "Alice", connection)

    assert admin.is_admin
    assert room.admin_id == admin.member_id
    assert room.code in table
    assert table.lookup(room.code) is room
    binding = table.resolve(connection.connection_id)
    assert binding is not None
    assert binding.room_code == room.code
    assert binding.member_id == admin.member_id


def test_lookup_ignores_case_and_whitespace():
    table = RoomTable(code_factory=lambda: "ABC123")
    room, _ = table.create("Room", "Alice", DummyConnection())

    assert table.lookup(" abc123 ") is room
    assert "abc123" in table
    assert table.lookup("ZZZZZZ") is None


def test_code_collisions_are_retried():
    codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    table = RoomTable(code_factory=lambda: next(codes))

    first, _ = table.create("One", "Alice", DummyConnection())
    second, _ = table.create("Two", "Carol", DummyConnection())

    assert first.code == "AAAAAA"
    assert second.code == "BBBBBB"
    assert len(table) == 2


def test_code_exhaustion_raises():
    table = RoomTable(code_factory=lambda: "AAAAAA")
    table.create("One", "Alice", DummyConnection())

    with pytest.raises(RoomCodeExhaustedError):
        table.create("Two", "Carol", DummyConnection())
    assert len(table) == 1


def test_exhaustion_gives_up_after_bounded_attempts():
    calls = 0

    def factory() -> str:
        nonlocal calls
        calls += 1
        return "AAAAAA"

    table = RoomTable(code_factory=factory)
    table.create("One", "Alice", DummyConnection())
    calls = 0

    with pytest.raises(RoomCodeExhaustedError):
        table.create("Two", "Carol", DummyConnection())
    assert calls == MAX_CODE_ATTEMPTS


def test_remove_is_idempotent_and_releases_bindings(table: RoomTable):
    connection = DummyConnection()
    room, _ = table.create("Room", "Alice", connection)

    assert table.remove(room.code) is room
    assert table.remove(room.code) is None
    assert room.code not in table
    assert table.resolve(connection.connection_id) is None


def test_unbind_with_member_guard_keeps_newer_binding(table: RoomTable):
    table.bind("conn", "ROOM01", "member-new")

    table.unbind("conn", "member-old")
    assert table.resolve("conn") is not None

    table.unbind("conn", "member-new")
    assert table.resolve("conn") is None

    # Unknown connections are ignored
    table.unbind("conn")
