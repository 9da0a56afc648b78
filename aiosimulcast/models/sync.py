"""Messages exchanged between viewing contexts of the same channel."""

from __future__ import annotations

from dataclasses import dataclass

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import AnnouncementKind


@dataclass
class SyncAnnouncement(DataClassORJSONMixin):
    """
    Announcement published on the shared broadcast channel.

    Receivers only use ``timestamp`` to drop stale announcements; the
    position itself is always recomputed locally.
    """

    kind: AnnouncementKind
    """What happened in the sending context."""
    sender: str
    """Identifier of the sending viewing context."""
    timestamp: int
    """Wall-clock time of the announcement in epoch milliseconds."""
    program_id: str | None = None
    """Program the sender is now playing."""
    offset: float | None = None
    """Offset the sender loaded or seeked to, in seconds."""
    index: int | None = None
    """Schedule index of ``program_id``."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    def is_stale(self, now: int, window: float) -> bool:
        """Return True if the announcement is older (or newer) than ``window`` seconds."""
        return abs(now - self.timestamp) >= window * 1000
