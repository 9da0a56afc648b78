"""Models for the simulcast channel: schedule data, API payloads and sync messages."""

from __future__ import annotations

__all__ = [
    "DEFAULT_EPOCH_MS",
    "AnnouncementKind",
    "ChannelConfig",
    "CurrentProgramData",
    "CurrentProgramResponse",
    "ErrorResponse",
    "Program",
    "Schedule",
    "SyncAnnouncement",
    "SyncState",
    "SyncStatus",
    "UpcomingEntry",
    "UpcomingProgramsData",
    "UpcomingProgramsResponse",
    "api",
    "default_channel",
    "epoch_from_iso",
    "load_channel",
    "parse_channel",
    "schedule",
    "sync",
    "types",
]

from . import api, schedule, sync, types
from .api import (
    CurrentProgramData,
    CurrentProgramResponse,
    ErrorResponse,
    UpcomingEntry,
    UpcomingProgramsData,
    UpcomingProgramsResponse,
)
from .schedule import (
    DEFAULT_EPOCH_MS,
    ChannelConfig,
    Program,
    Schedule,
    default_channel,
    epoch_from_iso,
    load_channel,
    parse_channel,
)
from .sync import SyncAnnouncement
from .types import AnnouncementKind, SyncState, SyncStatus
