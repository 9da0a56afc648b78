"""Command-line interface for serving and watching a simulcast channel."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from contextlib import suppress
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from zeroconf import ServiceListener

import aioconsole
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from aiosimulcast.client import (
    LocalBroadcastHub,
    Reconciler,
    ScheduleClient,
    SimulatedPlayer,
    SyncSettings,
)
from aiosimulcast.exceptions import ScheduleError
from aiosimulcast.models.schedule import (
    ChannelConfig,
    default_channel,
    epoch_from_iso,
    load_channel,
)
from aiosimulcast.models.types import SyncState
from aiosimulcast.position import (
    compute_position,
    format_duration,
    format_time,
    now_ms,
    upcoming,
)
from aiosimulcast.server import API_PATH, SERVICE_TYPE, SimulcastServer

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Run a looping virtual broadcast channel")
    parser.add_argument(
        "--channel",
        default=None,
        help="Path to a channel JSON file. Defaults to the bundled channel.",
    )
    parser.add_argument(
        "--epoch",
        default=None,
        help=(
            "Override the channel epoch (ISO-8601). Changing the epoch of a live "
            "channel moves every viewer to a different position."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Serve the distribution API")
    serve.add_argument("--host", default="0.0.0.0", help="Address to bind")
    serve.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve.add_argument(
        "--no-advertise",
        dest="advertise",
        action="store_false",
        help="Do not advertise the server via mDNS",
    )

    watch = sub.add_parser("watch", help="Follow the channel with a simulated player")
    watch.add_argument(
        "--url",
        default=None,
        help="Base URL of the API used as cross-check. If omitted, discover via mDNS.",
    )
    watch.add_argument(
        "--no-discover",
        dest="discover",
        action="store_false",
        help="Do not look for a server, compute positions locally only",
    )
    watch.add_argument(
        "--discovery-timeout",
        type=float,
        default=3.0,
        help="Seconds to wait for mDNS discovery",
    )
    watch.add_argument(
        "--contexts",
        type=int,
        default=1,
        help="Number of viewing contexts sharing one broadcast channel",
    )
    watch.add_argument(
        "--drift",
        type=float,
        default=0.0,
        help="Relative speed error of the simulated player, e.g. 0.01",
    )
    watch.add_argument(
        "--tick-interval",
        type=float,
        default=1.0,
        help="Seconds between reconciliation passes",
    )
    watch.add_argument(
        "--drift-threshold",
        type=float,
        default=0.2,
        help="Seconds of drift tolerated before seeking",
    )
    watch.add_argument("--volume", type=int, default=100, help="Initial volume (0-100)")
    watch.add_argument(
        "--unmuted",
        dest="muted",
        action="store_false",
        help="Start unmuted",
    )

    now = sub.add_parser("now", help="Print what is on right now")
    now.add_argument("--at", default=None, help="Instant to evaluate (ISO-8601)")

    up = sub.add_parser("upcoming", help="Print the upcoming programs")
    up.add_argument("--count", type=int, default=10, help="Number of programs")
    up.add_argument("--at", default=None, help="Instant to evaluate (ISO-8601)")

    args = parser.parse_args(argv)
    if args.command == "watch" and not 0 <= args.volume <= 100:
        parser.error("--volume must be between 0 and 100")
    if args.command == "watch" and args.contexts < 1:
        parser.error("--contexts must be at least 1")
    if args.command == "watch" and args.tick_interval <= 0:
        parser.error("--tick-interval must be positive")
    if args.command == "watch" and args.drift_threshold < 0:
        parser.error("--drift-threshold must be >= 0")
    if args.command == "watch" and args.drift <= -1:
        parser.error("--drift must be greater than -1")
    if args.command == "upcoming" and args.count < 0:
        parser.error("--count must be >= 0")
    return args


def load_config(args: argparse.Namespace) -> ChannelConfig:
    """Build the channel config from the CLI arguments."""
    config = load_channel(args.channel) if args.channel else default_channel()
    if args.epoch:
        config = config.with_epoch(epoch_from_iso(args.epoch))
        logger.warning("Using epoch override %s", args.epoch)
    return config


def _build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Construct the API base URL from mDNS service info."""
    path_raw = properties.get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else API_PATH
    if not path:
        path = API_PATH
    if not path.startswith("/"):
        path = "/" + path
    host_fmt = f"[{host}]" if ":" in host else host
    return f"http://{host_fmt}:{port}{path}"


class _ServiceDiscoveryListener:
    """Listens for simulcast server advertisements via mDNS."""

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
        """Ignore removals, the cross-check client tolerates a vanished server."""


async def discover_server(timeout: float) -> str | None:
    """Return the URL of the first advertised server, or None after ``timeout``."""
    loop = asyncio.get_running_loop()
    listener = _ServiceDiscoveryListener(loop)
    zeroconf = AsyncZeroconf()
    browser = AsyncServiceBrowser(
        zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", listener)
    )
    try:
        return await asyncio.wait_for(listener.wait_for_first(), timeout)
    except TimeoutError:
        return None
    finally:
        await browser.async_cancel()
        for task in listener.tasks:
            task.cancel()
        await zeroconf.async_close()


async def _wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _serve(args: argparse.Namespace, config: ChannelConfig) -> int:
    server = SimulcastServer(config)
    await server.start(args.host, args.port, advertise=args.advertise)
    try:
        await _wait_for_shutdown()
    finally:
        await server.stop()
    return 0


async def _watch(args: argparse.Namespace, config: ChannelConfig) -> int:
    url = args.url
    if url is None and args.discover:
        _print_event("Searching for simulcast server...")
        url = await discover_server(args.discovery_timeout)
        if url is None:
            _print_event("No server found, computing positions locally")
        else:
            _print_event(f"Found server at {url}")

    settings = SyncSettings(
        tick_interval=args.tick_interval, drift_threshold=args.drift_threshold
    )
    hub = LocalBroadcastHub()
    schedule_client = ScheduleClient(url) if url else None
    reconcilers: list[Reconciler] = []
    players: list[SimulatedPlayer] = []
    for index in range(args.contexts):
        player = SimulatedPlayer(config.schedule, drift=args.drift)
        players.append(player)
        reconciler = Reconciler(
            config,
            player,
            channel=hub.open(),
            schedule_client=schedule_client,
            settings=settings,
            context_id=f"context-{index + 1}",
            volume=args.volume,
            muted=args.muted,
        )
        reconciler.add_state_listener(
            lambda state, rid=reconciler.context_id: _print_state(rid, state)
        )
        reconcilers.append(reconciler)

    _print_instructions()
    loop = asyncio.get_running_loop()
    keyboard_task = loop.create_task(_keyboard_loop(reconcilers))

    def signal_handler() -> None:
        logger.debug("Received interrupt signal, shutting down...")
        keyboard_task.cancel()

    loop.add_signal_handler(signal.SIGINT, signal_handler)
    try:
        for reconciler in reconcilers:
            await reconciler.start()
        _print_event(_describe(reconcilers[0]))
        with suppress(asyncio.CancelledError):
            await keyboard_task
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        for reconciler in reconcilers:
            await reconciler.stop()
        for player in players:
            player.close()
        if schedule_client is not None:
            await schedule_client.close()
    return 0


def _print_now(config: ChannelConfig, at: int) -> None:
    position = compute_position(config, at)
    program = position.program
    _print_event(
        f"Now playing ({position.program_index + 1}/{len(config.schedule)}): {program.title}\n"
        f"Progress: {format_time(position.offset)} / {format_time(program.duration)} "
        f"({format_time(position.time_remaining)} left)\n"
        f"Next: {position.next_program.title}"
    )


def _print_upcoming(config: ChannelConfig, at: int, count: int) -> None:
    position, items = upcoming(config, at, count)
    _print_event(f"Now: {position.program.title} ({format_time(position.time_remaining)} left)")
    for item in items:
        marker = " [new cycle]" if item.first_in_next_cycle else ""
        _print_event(
            f"  in {format_duration(item.starts_in):>9}  {item.program.title} "
            f"({format_duration(item.program.duration)}){marker}"
        )


def _describe(reconciler: Reconciler) -> str:
    position = reconciler.current_position()
    lines = [
        f"[{reconciler.context_id}] {reconciler.status.value}",
        f"Now playing: {position.program.title}",
        f"Progress: {format_time(position.offset)} / {format_time(position.program.duration)}",
        f"Volume: {reconciler.volume}%" + (" (muted)" if reconciler.muted else ""),
    ]
    if reconciler.upcoming:
        lines.append(f"Next: {reconciler.upcoming[0].program.title}")
    return "\n".join(lines)


async def _keyboard_loop(reconcilers: list[Reconciler]) -> None:
    primary = reconcilers[0]
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            command = line.strip().lower()
            if not command:
                continue
            if command in {"quit", "exit", "q"}:
                break
            if command in {"status", "s"}:
                for reconciler in reconcilers:
                    _print_event(_describe(reconciler))
            elif command in {"upcoming", "u"}:
                for item in primary.upcoming:
                    _print_event(f"  in {format_duration(item.starts_in):>9}  {item.program.title}")
            elif command in {"sync", "y"}:
                for reconciler in reconcilers:
                    await reconciler.reconcile("keyboard")
            elif command in {"mute", "m"}:
                for reconciler in reconcilers:
                    await reconciler.mute()
                _print_event("Muted")
            elif command == "unmute":
                for reconciler in reconcilers:
                    await reconciler.unmute()
                _print_event("Unmuted")
            elif command in {"vol+", "volume+", "+"}:
                await _change_volume(reconcilers, 5)
            elif command in {"vol-", "volume-", "-"}:
                await _change_volume(reconcilers, -5)
            else:
                _print_event("Unknown command")
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


async def _change_volume(reconcilers: list[Reconciler], delta: int) -> None:
    target = max(0, min(100, reconcilers[0].volume + delta))
    for reconciler in reconcilers:
        await reconciler.set_volume(target)
    _print_event(f"Volume: {target}%")


def _print_state(context_id: str, state: SyncState) -> None:
    if state in (SyncState.SYNCED, SyncState.ERROR):
        _print_event(f"[{context_id}] {state.value}")


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions() -> None:
    print(  # noqa: T201
        "Commands: status(s), upcoming(u), sync(y), mute(m), unmute, vol+/-, quit(q)",
        flush=True,
    )


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        config = load_config(args)
        at = epoch_from_iso(args.at) if getattr(args, "at", None) else now_ms()
    except (OSError, ScheduleError, ValueError) as err:
        logger.error("Invalid channel or arguments: %s", err)  # noqa: TRY400
        return 1

    if args.command == "serve":
        return await _serve(args, config)
    if args.command == "watch":
        return await _watch(args, config)

    if args.command == "now":
        _print_now(config, at)
    else:
        _print_upcoming(config, at, args.count)
    return 0


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
