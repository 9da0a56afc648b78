"""Enum types used by aiosimulcast."""

from enum import Enum


class SyncState(Enum):
    """States of the client reconciliation loop."""

    INITIALIZING = "initializing"
    """The player is being (re)loaded at the computed position."""
    SYNCED = "synced"
    """The live player matches the computed position."""
    CORRECTING = "correcting"
    """A load or seek command is in flight."""
    ERROR = "error"
    """
    The player is unavailable or reported an error.

    Initialization is retried after a fixed delay.
    """


class SyncStatus(Enum):
    """Status shown to the viewer, never blocks playback."""

    SYNCING = "syncing"
    LIVE = "live"
    ERROR = "error"


class AnnouncementKind(Enum):
    """Kinds of cross-context announcements."""

    CORRECTION = "correction"
    """A context issued a load or seek to realign its player."""
    PROGRAM_ENDED = "program-ended"
    """A context reached the natural end of a program and advanced."""
    FORCE_SYNC = "force-sync"
    """A context came online and asks everyone to re-check."""
