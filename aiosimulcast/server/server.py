"""Distribution interface: read-only HTTP queries for the channel position."""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable

from aiohttp import web
from zeroconf import IPVersion
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from aiosimulcast.models.api import (
    CurrentProgramData,
    CurrentProgramResponse,
    ErrorResponse,
    UpcomingProgramsData,
    UpcomingProgramsResponse,
)
from aiosimulcast.models.schedule import ChannelConfig
from aiosimulcast.position import compute_position, lookahead, now_ms

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_simulcast._tcp.local."
API_PATH = "/api"
DEFAULT_UPCOMING_COUNT = 10
MAX_UPCOMING_COUNT = 100

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class SimulcastServer:
    """
    Serves the position every client could compute on its own.

    Responses are recomputed on every request and marked uncacheable; the
    server never stores or mutates anything.
    """

    def __init__(
        self,
        config: ChannelConfig,
        *,
        clock: Callable[[], int] | None = None,
        max_upcoming: int = MAX_UPCOMING_COUNT,
    ) -> None:
        """Initialize a server for ``config``."""
        self._config = config
        self._clock = clock or now_ms
        self._max_upcoming = max_upcoming
        self._app = web.Application()
        self._app.router.add_get(f"{API_PATH}/current", self._handle_current)
        self._app.router.add_get(f"{API_PATH}/upcoming", self._handle_upcoming)
        self._app.router.add_route("OPTIONS", f"{API_PATH}/{{endpoint}}", self._handle_options)
        self._runner: web.AppRunner | None = None
        self._zeroconf: AsyncZeroconf | None = None
        self._service_info: AsyncServiceInfo | None = None
        logger.debug(
            "SimulcastServer initialized: channel=%s, programs=%d",
            config.name,
            len(config.schedule),
        )

    @property
    def app(self) -> web.Application:
        """Return the aiohttp application serving the API."""
        return self._app

    @property
    def config(self) -> ChannelConfig:
        """Return the channel served."""
        return self._config

    async def start(
        self, host: str = "0.0.0.0", port: int = 8080, *, advertise: bool = True
    ) -> None:
        """Start listening and optionally advertise the API over mDNS."""
        if self._runner is not None:
            logger.debug("Server already running")
            return
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Serving channel '%s' on http://%s:%d%s", self._config.name, host, port, API_PATH
        )
        if advertise:
            try:
                await self._advertise(port)
            except OSError:
                logger.exception("Failed to advertise server via mDNS")

    async def stop(self) -> None:
        """Stop advertising and listening."""
        if self._zeroconf is not None:
            if self._service_info is not None:
                await self._zeroconf.async_unregister_service(self._service_info)
                self._service_info = None
            await self._zeroconf.async_close()
            self._zeroconf = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Server stopped")

    async def _advertise(self, port: int) -> None:
        address = _get_local_ip()
        hostname = socket.gethostname().split(".", 1)[0]
        self._service_info = AsyncServiceInfo(
            SERVICE_TYPE,
            f"{self._config.name} ({hostname}).{SERVICE_TYPE}",
            addresses=[socket.inet_aton(address)],
            port=port,
            properties={"path": API_PATH, "channel": self._config.name},
            server=f"{hostname}.local.",
        )
        self._zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
        await self._zeroconf.async_register_service(self._service_info)
        logger.info("Advertising %s on %s:%d", SERVICE_TYPE, address, port)

    async def _handle_current(self, request: web.Request) -> web.Response:
        try:
            position = compute_position(self._config, self._clock())
            response = CurrentProgramResponse(
                data=CurrentProgramData.from_position(self._config, position),
                server_timestamp=self._clock(),
            )
        except Exception:
            logger.exception("Failed to compute current program for %s", request.remote)
            return _error_response(500, "Failed to fetch current program")
        return _json_response(response.to_jsonb())

    async def _handle_upcoming(self, request: web.Request) -> web.Response:
        raw_count = request.query.get("count", str(DEFAULT_UPCOMING_COUNT))
        try:
            count = int(raw_count)
        except ValueError:
            return _error_response(400, f"Invalid count {raw_count!r}")
        if not 0 <= count <= self._max_upcoming:
            return _error_response(400, f"count must be between 0 and {self._max_upcoming}")

        try:
            now = self._clock()
            position = compute_position(self._config, now)
            items = lookahead(self._config, position, count, now)
            response = UpcomingProgramsResponse(
                data=UpcomingProgramsData.from_lookahead(self._config, position, items),
                server_timestamp=self._clock(),
            )
        except Exception:
            logger.exception("Failed to compute upcoming programs for %s", request.remote)
            return _error_response(500, "Failed to fetch upcoming programs")
        return _json_response(response.to_jsonb())

    async def _handle_options(self, _request: web.Request) -> web.Response:
        return web.Response(status=204, headers=NO_CACHE_HEADERS)


def _json_response(body: bytes, status: int = 200) -> web.Response:
    return web.Response(
        body=body, status=status, content_type="application/json", headers=NO_CACHE_HEADERS
    )


def _error_response(status: int, message: str) -> web.Response:
    return _json_response(ErrorResponse(error=message).to_jsonb(), status=status)


def _get_local_ip() -> str:
    """Return the address used for outgoing traffic, falling back to loopback."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # no packet is sent for a UDP connect
            sock.connect(("10.255.255.255", 1))
            return str(sock.getsockname()[0])
        except OSError:
            return "127.0.0.1"
