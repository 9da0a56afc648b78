"""Public interface for the simulcast client package."""

from .broadcast import (
    DEFAULT_CHANNEL_NAME,
    AnnouncementHandler,
    BroadcastChannel,
    LocalBroadcastChannel,
    LocalBroadcastHub,
)
from .player import EndCallback, ErrorCallback, Player, PlayerCapabilities
from .reconciler import Reconciler, StateCallback, SyncSettings
from .schedule_client import ScheduleClient
from .simulated import SimulatedPlayer

__all__ = [
    "DEFAULT_CHANNEL_NAME",
    "AnnouncementHandler",
    "BroadcastChannel",
    "EndCallback",
    "ErrorCallback",
    "LocalBroadcastChannel",
    "LocalBroadcastHub",
    "Player",
    "PlayerCapabilities",
    "Reconciler",
    "ScheduleClient",
    "SimulatedPlayer",
    "StateCallback",
    "SyncSettings",
]
