"""In-process player that plays the schedule against the event loop clock."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from aiosimulcast.exceptions import PlayerError
from aiosimulcast.models.schedule import Schedule

from .player import EndCallback, ErrorCallback, PlayerCapabilities

logger = logging.getLogger(__name__)


class SimulatedPlayer:
    """
    Player without rendering, used by the CLI and for local experiments.

    Playback advances with ``loop.time()``; ``drift`` skews the reported
    position to emulate a player that runs slightly fast or slow.
    """

    def __init__(
        self,
        schedule: Schedule,
        *,
        drift: float = 0.0,
        capabilities: PlayerCapabilities | None = None,
    ) -> None:
        """Create a simulated player for the programs of ``schedule``."""
        self._durations = {program.media_ref: program.duration for program in schedule}
        self._drift = drift
        self._capabilities = capabilities or PlayerCapabilities()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._media_ref: str | None = None
        self._start_offset = 0.0
        self._started_at = 0.0
        self._end_handle: asyncio.TimerHandle | None = None
        self._end_callbacks: list[EndCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self.muted = True
        self.volume = 100

    @property
    def capabilities(self) -> PlayerCapabilities:
        """Return the capabilities of this player."""
        return self._capabilities

    @property
    def available(self) -> bool:
        """Return True, a simulated player is always ready."""
        return True

    @property
    def media_ref(self) -> str | None:
        """Return the currently loaded content."""
        return self._media_ref

    async def load(self, media_ref: str, start_offset: float) -> None:
        """Load content and schedule its end-of-content event."""
        duration = self._durations.get(media_ref)
        if duration is None:
            raise PlayerError(f"Unknown media {media_ref!r}")
        self._loop = asyncio.get_running_loop()
        self._media_ref = media_ref
        self._start_offset = max(0.0, float(start_offset))
        self._started_at = self._loop.time()
        self._schedule_end(duration)
        logger.debug("Loaded %s at %.2fs", media_ref, self._start_offset)

    async def seek(self, offset: float) -> None:
        """Jump within the loaded content."""
        if self._media_ref is None or self._loop is None:
            raise PlayerError("Nothing loaded")
        self._start_offset = max(0.0, float(offset))
        self._started_at = self._loop.time()
        self._schedule_end(self._durations[self._media_ref])

    def current_offset(self) -> float | None:
        """Return the simulated playback position."""
        if self._media_ref is None or self._loop is None:
            return None
        elapsed = (self._loop.time() - self._started_at) * (1.0 + self._drift)
        return min(self._start_offset + elapsed, float(self._durations[self._media_ref]))

    async def mute(self) -> None:
        """Mute audio."""
        self.muted = True

    async def unmute(self) -> None:
        """Unmute audio."""
        self.muted = False

    async def set_volume(self, volume: int) -> None:
        """Set the volume in the range 0..100."""
        self.volume = max(0, min(100, volume))

    def add_end_listener(self, callback: EndCallback) -> Callable[[], None]:
        """Register a callback for end of content."""
        self._end_callbacks.append(callback)
        return lambda: self._end_callbacks.remove(callback)

    def add_error_listener(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a callback for player errors."""
        self._error_callbacks.append(callback)
        return lambda: self._error_callbacks.remove(callback)

    def fail(self, error: Exception) -> None:
        """Report an error to the listeners, as a real player would."""
        for callback in list(self._error_callbacks):
            result = callback(error)
            if asyncio.iscoroutine(result):
                self._track(asyncio.get_running_loop().create_task(result))

    def close(self) -> None:
        """Cancel the pending end-of-content event."""
        if self._end_handle is not None:
            self._end_handle.cancel()
            self._end_handle = None
        for task in self._tasks:
            task.cancel()

    def _schedule_end(self, duration: int) -> None:
        assert self._loop is not None
        if self._end_handle is not None:
            self._end_handle.cancel()
        remaining = max(0.0, (duration - self._start_offset) / (1.0 + self._drift))
        self._end_handle = self._loop.call_later(remaining, self._on_end)

    def _on_end(self) -> None:
        self._end_handle = None
        logger.debug("Reached end of %s", self._media_ref)
        assert self._loop is not None
        for callback in list(self._end_callbacks):
            result = callback()
            if asyncio.iscoroutine(result):
                self._track(self._loop.create_task(result))

    def _track(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
