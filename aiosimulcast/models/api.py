"""Payloads served by the distribution interface.

Both endpoints return ``{"success": ..., "data": ..., "server_timestamp": ...}``
so a client can fall back to local computation using ``epoch_start``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mashumaro.mixins.orjson import DataClassORJSONMixin

from .schedule import ChannelConfig, Program

if TYPE_CHECKING:
    from aiosimulcast.position import Position, UpcomingProgram


@dataclass
class CurrentProgramData(DataClassORJSONMixin):
    """The current position with denormalized program fields."""

    program: Program
    current_time: int
    """Whole seconds into the program."""
    exact_time: float
    """Seconds into the program including the sub-second part."""
    time_remaining: int
    next_program: Program
    program_index: int
    cycle_position: int
    total_duration: int
    epoch_start: int
    """Epoch in milliseconds, lets clients switch to local computation."""
    server_time: int
    total_programs: int
    is_first_in_cycle: bool
    is_last_in_cycle: bool
    next_program_start_time: int

    @classmethod
    def from_position(cls, config: ChannelConfig, position: Position) -> CurrentProgramData:
        """Build the payload for a computed position."""
        last_index = len(config.schedule) - 1
        return cls(
            program=position.program,
            current_time=position.offset,
            exact_time=position.exact_offset,
            time_remaining=position.time_remaining,
            next_program=position.next_program,
            program_index=position.program_index,
            cycle_position=position.cycle_position,
            total_duration=position.total_duration,
            epoch_start=config.epoch_ms,
            server_time=position.now_ms,
            total_programs=len(config.schedule),
            is_first_in_cycle=position.program_index == 0,
            is_last_in_cycle=position.program_index == last_index,
            next_program_start_time=position.next_program_start_ms,
        )


@dataclass
class CurrentProgramResponse(DataClassORJSONMixin):
    """Response of ``GET /api/current``."""

    data: CurrentProgramData
    server_timestamp: int
    success: bool = True


@dataclass
class UpcomingEntry(DataClassORJSONMixin):
    """One predicted program in the upcoming list."""

    program: Program
    program_index: int
    starts_in: int
    """Seconds until the program starts."""
    starts_at: int
    """Absolute start time in epoch milliseconds."""
    first_in_next_cycle: bool
    wraps: bool

    @classmethod
    def from_upcoming(cls, item: UpcomingProgram) -> UpcomingEntry:
        """Build an entry from a lookahead item."""
        return cls(
            program=item.program,
            program_index=item.program_index,
            starts_in=item.starts_in,
            starts_at=item.starts_at_ms,
            first_in_next_cycle=item.first_in_next_cycle,
            wraps=item.wraps,
        )


@dataclass
class UpcomingProgramsData(DataClassORJSONMixin):
    """The current position plus the lookahead list."""

    current: Program
    current_index: int
    current_time: int
    time_remaining: int
    server_time: int
    epoch_start: int
    total_programs: int
    is_last_in_cycle: bool
    will_wrap_to_first: bool
    upcoming: list[UpcomingEntry] = field(default_factory=list)
    next_start_times: list[int] = field(default_factory=list)
    next_start_absolute: list[int] = field(default_factory=list)
    program_indices: list[int] = field(default_factory=list)

    @classmethod
    def from_lookahead(
        cls,
        config: ChannelConfig,
        position: Position,
        items: list[UpcomingProgram],
    ) -> UpcomingProgramsData:
        """Build the payload for a position and its lookahead list."""
        is_last = position.program_index == len(config.schedule) - 1
        return cls(
            current=position.program,
            current_index=position.program_index,
            current_time=position.offset,
            time_remaining=position.time_remaining,
            server_time=position.now_ms,
            epoch_start=config.epoch_ms,
            total_programs=len(config.schedule),
            is_last_in_cycle=is_last,
            will_wrap_to_first=is_last,
            upcoming=[UpcomingEntry.from_upcoming(item) for item in items],
            next_start_times=[item.starts_in for item in items],
            next_start_absolute=[item.starts_at_ms for item in items],
            program_indices=[item.program_index for item in items],
        )


@dataclass
class UpcomingProgramsResponse(DataClassORJSONMixin):
    """Response of ``GET /api/upcoming``."""

    data: UpcomingProgramsData
    server_timestamp: int
    success: bool = True


@dataclass
class ErrorResponse(DataClassORJSONMixin):
    """Response sent when a request cannot be answered."""

    error: str
    success: bool = False
