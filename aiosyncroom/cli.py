"""Command-line interface for running a syncroom server, host or listener."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import uuid
from collections.abc import Sequence
from contextlib import suppress
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from zeroconf import ServiceListener

import aioconsole
from aiohttp import ClientError
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from aiosyncroom.client import SyncCommand, SyncRoomClient, VirtualTransport
from aiosyncroom.exceptions import RoomNotFoundError
from aiosyncroom.models.core import MemberInfo, RoomInfo
from aiosyncroom.models.playback import TrackChangedPayload
from aiosyncroom.server import SyncRoomServer
from aiosyncroom.server.server import DEFAULT_PATH, SERVICE_TYPE

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"  # noqa: S104
DEFAULT_PORT = 3001
REPORT_INTERVAL = 1.0


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the syncroom tools."""
    parser = argparse.ArgumentParser(description="Synchronized listening rooms")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run a syncroom server")
    serve.add_argument(
        "--host",
        default=os.environ.get("HOST", DEFAULT_HOST),
        help="Address to listen on (env HOST)",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help="Port to listen on (env PORT)",
    )
    serve.add_argument("--name", default="Syncroom", help="Friendly name of the server")
    serve.add_argument("--id", default=None, help="Unique identifier of the server")
    serve.add_argument(
        "--no-advertise",
        action="store_true",
        help="Do not advertise the server via mDNS",
    )

    host = subparsers.add_parser("host", help="Create a room and control its playback")
    host.add_argument("room_name", help="Name of the room to create")
    host.add_argument("--user", default="Host", help="Your display name")
    host.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the server. If omitted, discover via mDNS.",
    )

    join = subparsers.add_parser("join", help="Join a room and follow its playback")
    join.add_argument("room_code", help="Code of the room to join")
    join.add_argument("--user", default="Listener", help="Your display name")
    join.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the server. If omitted, discover via mDNS.",
    )
    join.add_argument(
        "--tolerance",
        type=float,
        default=0.5,
        help="Drift in seconds accepted before correcting playback",
    )
    return parser.parse_args(argv)


def _build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Construct WebSocket URL from mDNS service info."""
    path_raw = properties.get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else DEFAULT_PATH
    if not path:
        path = DEFAULT_PATH
    if not path.startswith("/"):
        path = "/" + path
    host_fmt = f"[{host}]" if ":" in host else host
    return f"ws://{host_fmt}:{port}{path}"


class _ServiceDiscoveryListener:
    """Listens for syncroom server advertisements via mDNS."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._first_result: asyncio.Future[str] = loop.create_future()
        self.tasks: set[asyncio.Task[None]] = set()

    async def wait_for_first(self) -> str:
        """Wait for the first server to be discovered."""
        return await self._first_result

    async def _process_service_info(
        self, zeroconf: AsyncZeroconf, service_type: str, name: str
    ) -> None:
        info = await zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        url = _build_service_url(addresses[0], info.port, info.properties)
        if not self._first_result.done():
            self._first_result.set_result(url)

    def _schedule(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        task = self._loop.create_task(self._process_service_info(zeroconf, service_type, name))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def add_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def update_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def remove_service(self, _zeroconf: AsyncZeroconf, _service_type: str, _name: str) -> None:
        pass


async def discover_server(timeout: float = 10.0) -> str:
    """
    Find a syncroom server on the local network.

    Raises:
        TimeoutError: If no server was found in time.
    """
    loop = asyncio.get_running_loop()
    listener = _ServiceDiscoveryListener(loop)
    async with AsyncZeroconf() as zeroconf:
        browser = AsyncServiceBrowser(
            zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", listener)
        )
        try:
            async with asyncio.timeout(timeout):
                return await listener.wait_for_first()
        finally:
            await browser.async_cancel()


async def _resolve_url(url: str | None) -> str:
    if url is not None:
        return url
    logger.info("Waiting for mDNS discovery of syncroom server...")
    _print_event("Searching for syncroom server...")
    url = await discover_server()
    _print_event(f"Found server at {url}")
    return url


def _install_stop_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)


def _remove_stop_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.remove_signal_handler(sig)


async def _serve(args: argparse.Namespace) -> int:
    loop = asyncio.get_running_loop()
    server = SyncRoomServer(loop, args.id or uuid.uuid4().hex, args.name)
    stop = asyncio.Event()
    _install_stop_handlers(loop, stop)
    try:
        await server.start_server(args.host, args.port, advertise=not args.no_advertise)
        await stop.wait()
    finally:
        _remove_stop_handlers(loop)
        await server.close()
    return 0


def _describe_room(room: RoomInfo) -> str:
    lines = [f"Room {room.name} ({room.room_code}), {len(room.members)} member(s):"]
    lines.extend(
        f"  {member.name}{' (admin)' if member.is_admin else ''}" for member in room.members
    )
    if room.playback is not None:
        playback = room.playback
        state = "playing" if playback.is_playing else "paused"
        lines.append(f"  {playback.source_name or 'Unknown source'}: {state}")
    return "\n".join(lines)


def _register_printers(client: SyncRoomClient) -> None:
    """Print room events as they arrive."""

    def on_member_joined(member: MemberInfo) -> None:
        _print_event(f"{member.name} joined")

    def on_member_left(member_id: str) -> None:
        _print_event(f"Member {member_id[:8]} left")

    def on_room_closed(room_code: str) -> None:
        _print_event(f"Room {room_code} was closed")

    def on_track_changed(payload: TrackChangedPayload) -> None:
        _print_event(f"Now playing: {payload.source_name}")

    def on_stream_state(live: bool) -> None:  # noqa: FBT001
        _print_event("Live stream started" if live else "Live stream stopped")

    client.add_member_joined_listener(on_member_joined)
    client.add_member_left_listener(on_member_left)
    client.add_room_closed_listener(on_room_closed)
    client.add_track_changed_listener(on_track_changed)
    client.add_stream_state_listener(on_stream_state)


async def _report_loop(client: SyncRoomClient, transport: VirtualTransport) -> None:
    """Periodically report the admin's position while playing."""
    while client.connected and client.room is not None:
        await asyncio.sleep(REPORT_INTERVAL)
        if transport.is_playing and client.room is not None:
            try:
                await client.update_playback(transport.position, is_playing=True)
            except (RuntimeError, ConnectionError):
                logger.debug("Stopping position reports", exc_info=True)
                return


async def _host_keyboard_loop(  # noqa: PLR0912
    client: SyncRoomClient, transport: VirtualTransport
) -> None:
    while client.connected and client.room is not None:
        try:
            line = await aioconsole.ainput()
        except EOFError:
            break
        parts = line.strip().split()
        if not parts:
            continue
        keyword = parts[0].lower()
        if keyword in {"quit", "exit", "q"}:
            break
        try:
            if keyword == "load" and len(parts) >= 2:
                name = " ".join(parts[2:]) or parts[1].rsplit("/", 1)[-1]
                transport.load(parts[1], name)
                await client.load_track(parts[1], name)
            elif keyword in {"play", "p"}:
                transport.play()
                await client.update_playback(transport.position, is_playing=True)
            elif keyword == "pause":
                transport.pause()
                await client.update_playback(transport.position, is_playing=False)
            elif keyword == "seek" and len(parts) == 2:
                transport.seek(float(parts[1]))
                await client.update_playback(transport.position, is_playing=transport.is_playing)
            elif keyword == "live" and len(parts) == 2 and parts[1] in {"start", "stop"}:
                if parts[1] == "start":
                    await client.start_live_stream()
                else:
                    await client.stop_live_stream()
            elif keyword == "members" and client.room is not None:
                _print_event(_describe_room(client.room))
            else:
                _print_event("Unknown command")
        except ValueError:
            _print_event("Invalid value")


async def _host(args: argparse.Namespace) -> int:
    url = await _resolve_url(args.url)
    transport = VirtualTransport()
    async with SyncRoomClient() as client:
        await client.connect(url)
        created = await client.create_room(args.room_name, args.user)
        _print_event(f"Room code: {created.room.room_code}")
        _register_printers(client)
        _print_event(
            "Commands: load <url> [name], play(p), pause, seek <s>, live start|stop, members, "
            "quit(q)"
        )
        report_task = asyncio.create_task(_report_loop(client, transport))
        try:
            await _host_keyboard_loop(client, transport)
        finally:
            report_task.cancel()
            await client.leave_room()
    return 0


async def _join(args: argparse.Namespace) -> int:
    url = await _resolve_url(args.url)
    transport = VirtualTransport()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    async with SyncRoomClient(tolerance_s=args.tolerance) as client:
        await client.connect(url)
        _register_printers(client)
        client.attach_transport(transport)

        def on_track_changed(payload: TrackChangedPayload) -> None:
            transport.load(payload.source_url, payload.source_name)

        def on_correction(command: SyncCommand) -> None:
            action = f" and {command.action.value}" if command.action else ""
            _print_event(f"Sync: seek to {command.seek_to:.2f}s{action}")

        client.add_track_changed_listener(on_track_changed)
        client.add_correction_listener(on_correction)
        client.add_room_closed_listener(lambda _code: stop.set())

        try:
            joined = await client.join_room(args.room_code, args.user)
        except RoomNotFoundError as err:
            _print_event(str(err))
            return 1
        _print_event(_describe_room(joined.room))

        _install_stop_handlers(loop, stop)
        try:
            while client.connected and not stop.is_set():
                with suppress(TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=1.0)
        finally:
            _remove_stop_handlers(loop)
            await client.leave_room()
    return 0


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        if args.command == "serve":
            return await _serve(args)
        if args.command == "host":
            return await _host(args)
        return await _join(args)
    except (TimeoutError, OSError, ClientError) as err:
        logger.debug("Connection error", exc_info=True)
        _print_event(f"Connection failed: {err or type(err).__name__}")
        return 1


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
