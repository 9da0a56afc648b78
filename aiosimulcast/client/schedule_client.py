"""HTTP client for the distribution interface, used only as a cross-check."""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Self

from aiohttp import ClientError, ClientSession, ClientTimeout

from aiosimulcast.models.api import (
    CurrentProgramData,
    CurrentProgramResponse,
    UpcomingProgramsData,
    UpcomingProgramsResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 5.0
DEFAULT_TIMEOUT = 5.0
NO_CACHE_HEADERS = {"Cache-Control": "no-cache, no-store, must-revalidate"}


class ScheduleClient:
    """
    Fetch server-computed positions.

    Failures never propagate: the local position function is authoritative,
    so a failed fetch only returns the last known value or None.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: ClientSession | None = None,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Create a client for the server at ``base_url`` (e.g. ``http://host:8080/api``)."""
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._cache_ttl = cache_ttl
        self._timeout = ClientTimeout(total=timeout)
        self._last_data: CurrentProgramData | None = None
        self._last_fetch: float | None = None
        self._in_flight: asyncio.Future[CurrentProgramData | None] | None = None

    @property
    def base_url(self) -> str:
        """Return the base URL of the distribution interface."""
        return self._base_url

    @property
    def last_data(self) -> CurrentProgramData | None:
        """Return the most recent successful ``current`` response."""
        return self._last_data

    async def fetch_current(self, *, skip_cache: bool = False) -> CurrentProgramData | None:
        """
        Return the server's current position.

        Responses younger than the cache TTL are reused unless ``skip_cache``
        is set. Concurrent callers share a single request.
        """
        loop = asyncio.get_running_loop()
        if (
            not skip_cache
            and self._last_data is not None
            and self._last_fetch is not None
            and loop.time() - self._last_fetch < self._cache_ttl
        ):
            return self._last_data

        if self._in_flight is not None:
            return await asyncio.shield(self._in_flight)

        self._in_flight = loop.create_future()
        result: CurrentProgramData | None = None
        try:
            body = await self._get("current")
            if body is not None:
                result = self._decode_current(body)
            if result is not None:
                self._last_data = result
                self._last_fetch = loop.time()
            else:
                result = self._last_data
        finally:
            in_flight, self._in_flight = self._in_flight, None
            if not in_flight.done():
                in_flight.set_result(result)
        return result

    async def fetch_upcoming(self, count: int = 10) -> UpcomingProgramsData | None:
        """Return the server's current position and ``count`` upcoming programs."""
        body = await self._get("upcoming", params={"count": str(count)})
        if body is None:
            return None
        try:
            response = UpcomingProgramsResponse.from_json(body)
        except Exception:
            logger.warning("Failed to decode upcoming programs response", exc_info=True)
            return None
        return response.data if response.success else None

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _decode_current(self, body: bytes) -> CurrentProgramData | None:
        try:
            response = CurrentProgramResponse.from_json(body)
        except Exception:
            logger.warning("Failed to decode current program response", exc_info=True)
            return None
        if not response.success:
            logger.warning("Server reported failure for current program")
            return None
        return response.data

    async def _get(self, endpoint: str, params: dict[str, str] | None = None) -> bytes | None:
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        url = f"{self._base_url}/{endpoint}"
        try:
            async with self._session.get(
                url, params=params, headers=NO_CACHE_HEADERS, timeout=self._timeout
            ) as resp:
                if resp.status != 200:
                    logger.warning("GET %s returned HTTP %d", url, resp.status)
                    return None
                return await resp.read()
        except (ClientError, TimeoutError) as err:
            logger.warning("GET %s failed (%s), using local position", url, type(err).__name__)
            return None

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the session when leaving the async context manager."""
        await self.close()
