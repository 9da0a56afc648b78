"""Control surface of the live player driven by the reconciliation loop."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

EndCallback = Callable[[], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class PlayerCapabilities:
    """What a player supports, checked once when the loop starts."""

    can_seek: bool = True
    can_report_time: bool = True
    can_mute: bool = True
    can_set_volume: bool = True


@runtime_checkable
class Player(Protocol):
    """
    A controllable video player owned by exactly one viewing context.

    Every command may fail with ``PlayerError`` or any other exception; the
    reconciliation loop treats failures as recoverable.
    """

    @property
    def capabilities(self) -> PlayerCapabilities:
        """Return the capabilities of this player."""
        ...

    @property
    def available(self) -> bool:
        """Return True once the player accepts commands."""
        ...

    async def load(self, media_ref: str, start_offset: float) -> None:
        """Load ``media_ref`` and start playing at ``start_offset`` seconds."""
        ...

    async def seek(self, offset: float) -> None:
        """Jump to ``offset`` seconds in the loaded content."""
        ...

    def current_offset(self) -> float | None:
        """Return the playback position in seconds, None if unknown."""
        ...

    async def mute(self) -> None:
        """Mute audio."""
        ...

    async def unmute(self) -> None:
        """Unmute audio."""
        ...

    async def set_volume(self, volume: int) -> None:
        """Set the volume in the range 0..100."""
        ...

    def add_end_listener(self, callback: EndCallback) -> Callable[[], None]:
        """Register a callback for end of content, return a function removing it."""
        ...

    def add_error_listener(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a callback for player errors, return a function removing it."""
        ...
