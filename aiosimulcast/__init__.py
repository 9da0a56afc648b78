"""aiosimulcast: a looping virtual broadcast channel every viewer sees in sync."""

from __future__ import annotations

# Re-export the client library and position functions for easy import
from aiosimulcast.client import (
    BroadcastChannel,
    LocalBroadcastHub,
    Player,
    PlayerCapabilities,
    Reconciler,
    ScheduleClient,
    SimulatedPlayer,
    SyncSettings,
)
from aiosimulcast.exceptions import PlayerError, ScheduleError, SimulcastError
from aiosimulcast.models import ChannelConfig, Program, Schedule, SyncState, SyncStatus
from aiosimulcast.position import Position, UpcomingProgram, compute_position, lookahead

__all__ = [
    "BroadcastChannel",
    "ChannelConfig",
    "LocalBroadcastHub",
    "Player",
    "PlayerCapabilities",
    "PlayerError",
    "Position",
    "Program",
    "Reconciler",
    "Schedule",
    "ScheduleClient",
    "ScheduleError",
    "SimulatedPlayer",
    "SimulcastError",
    "SyncSettings",
    "SyncState",
    "SyncStatus",
    "UpcomingProgram",
    "compute_position",
    "lookahead",
]
