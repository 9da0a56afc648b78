"""Deterministic wall-clock to schedule-position mapping.

Every participant holding the same ``ChannelConfig`` computes the same
position for the same instant, so the position is never stored or owned by
anyone. All functions here are pure: ``now_ms`` is always supplied by the
caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from aiosimulcast.models.schedule import ChannelConfig, Program


@dataclass(frozen=True, slots=True)
class Position:
    """Where the channel is at a given instant."""

    program: Program
    program_index: int
    offset: int
    """Whole seconds into the program, in ``[0, duration)``."""
    exact_offset: float
    """``offset`` plus the sub-second part of the elapsed time."""
    time_remaining: int
    """Seconds until the program ends, ``duration - offset``."""
    next_program: Program
    cycle_position: int
    """Whole seconds into the current cycle, in ``[0, total_duration)``."""
    total_duration: int
    now_ms: int
    """The instant this position was computed for."""

    @property
    def next_program_start_ms(self) -> int:
        """Absolute timestamp at which the next program starts."""
        return self.now_ms + self.time_remaining * 1000


@dataclass(frozen=True, slots=True)
class UpcomingProgram:
    """A program predicted to air after the current one."""

    program: Program
    program_index: int
    starts_in: int
    """Seconds from ``now`` until this program starts."""
    starts_at_ms: int
    first_in_next_cycle: bool
    """True for the first index-0 entry, the program that opens the next cycle."""
    wraps: bool
    """True when the program lies past the end of the current cycle."""


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def compute_position(config: ChannelConfig, now: int) -> Position:
    """
    Compute the channel position at the instant ``now`` (epoch milliseconds).

    Instants before the epoch are folded into the cycle with the same modulo
    rule, so the result is always inside ``[0, total_duration)``.
    """
    schedule = config.schedule
    total = schedule.total_duration
    delta_ms = now - config.epoch_ms
    # floor division and modulo keep negative deltas inside the cycle
    elapsed = delta_ms // 1000
    fraction = (delta_ms % 1000) / 1000
    cycle_position = elapsed % total

    accumulated = 0
    for index, program in enumerate(schedule):
        if cycle_position < accumulated + program.duration:
            offset = cycle_position - accumulated
            return Position(
                program=program,
                program_index=index,
                offset=offset,
                exact_offset=offset + fraction,
                time_remaining=program.duration - offset,
                next_program=schedule[schedule.successor(index)],
                cycle_position=cycle_position,
                total_duration=total,
                now_ms=now,
            )
        accumulated += program.duration

    # Unreachable: the program intervals tile [0, total)
    raise AssertionError(f"cycle position {cycle_position} outside schedule of {total}s")


def lookahead(
    config: ChannelConfig,
    position: Position,
    count: int,
    now: int | None = None,
) -> list[UpcomingProgram]:
    """
    Predict the ``count`` programs following ``position``.

    Start times are relative to ``now``, which defaults to the instant the
    position was computed for.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    if now is None:
        now = position.now_ms

    schedule = config.schedule
    current_index = position.program_index
    cycle_started = False
    starts_in = position.time_remaining
    index = current_index
    result: list[UpcomingProgram] = []
    for _ in range(count):
        index = schedule.successor(index)
        program = schedule[index]
        result.append(
            UpcomingProgram(
                program=program,
                program_index=index,
                starts_in=starts_in,
                starts_at_ms=now + starts_in * 1000,
                first_in_next_cycle=index == 0 and not cycle_started,
                wraps=index < current_index,
            )
        )
        starts_in += program.duration
        cycle_started = cycle_started or index == 0
    return result


def upcoming(
    config: ChannelConfig, now: int, count: int = 10
) -> tuple[Position, list[UpcomingProgram]]:
    """Compute the current position and the next ``count`` programs at ``now``."""
    position = compute_position(config, now)
    return position, lookahead(config, position, count, now)


def format_time(seconds: float) -> str:
    """Format seconds as ``M:SS``."""
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}"


def format_duration(seconds: int) -> str:
    """Format a duration as ``1h 37m`` or ``37 mins``."""
    hours, rest = divmod(int(seconds), 3600)
    mins = rest // 60
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins} mins"
