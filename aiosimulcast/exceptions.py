"""Exceptions raised by aiosimulcast."""

from __future__ import annotations


class SimulcastError(Exception):
    """Base class for all aiosimulcast errors."""


class ScheduleError(SimulcastError, ValueError):
    """
    The channel data violates a schedule invariant.

    Raised while building the schedule, never while computing a position:
    an empty schedule or a non-positive duration has no valid position.
    """


class PlayerError(SimulcastError):
    """A live player rejected or failed a control command."""
