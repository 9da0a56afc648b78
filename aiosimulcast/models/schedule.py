"""Channel data: programs, the looping schedule and the shared epoch.

Everything in this module is immutable. A ``ChannelConfig`` is built once at
startup and handed to the position functions, the distribution server and
every reconciliation loop; nothing reads schedule data from module globals.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import cached_property
from importlib import resources
from pathlib import Path

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from aiosimulcast.exceptions import ScheduleError

# 2023-01-01T00:00:00Z
DEFAULT_EPOCH_MS = 1_672_531_200_000


@dataclass(frozen=True)
class Program(DataClassORJSONMixin):
    """One playable item of the schedule."""

    id: str
    """Identifier, unique within a schedule."""
    media_ref: str
    """Opaque reference to the playable content (e.g. a video id)."""
    title: str
    """Display title."""
    duration: int
    """Duration in whole seconds."""
    description: str = ""
    """Display description."""
    category: str | None = None
    language: str | None = None
    thumbnail: str | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True

    def __post_init__(self) -> None:
        """Reject programs that can never be positioned."""
        if not self.id:
            raise ScheduleError("Program id must not be empty")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int):
            raise ScheduleError(f"Program {self.id!r} duration must be whole seconds")
        if self.duration <= 0:
            raise ScheduleError(
                f"Program {self.id!r} duration must be positive, got {self.duration}"
            )


@dataclass(frozen=True)
class Schedule(DataClassORJSONMixin):
    """Ordered programs played in a loop; index 0 follows the last index."""

    programs: tuple[Program, ...]

    def __post_init__(self) -> None:
        """Validate the schedule invariants."""
        programs = tuple(self.programs)
        if not programs:
            raise ScheduleError("Schedule must contain at least one program")
        seen: set[str] = set()
        for program in programs:
            if program.id in seen:
                raise ScheduleError(f"Duplicate program id {program.id!r}")
            seen.add(program.id)
        object.__setattr__(self, "programs", programs)

    @cached_property
    def total_duration(self) -> int:
        """Return the length of one cycle in seconds."""
        return sum(program.duration for program in self.programs)

    def __len__(self) -> int:
        """Return the number of programs in one cycle."""
        return len(self.programs)

    def __getitem__(self, index: int) -> Program:
        """Return the program at the given index."""
        return self.programs[index]

    def __iter__(self) -> Iterator[Program]:
        """Iterate over the programs in play order."""
        return iter(self.programs)

    def successor(self, index: int) -> int:
        """Return the cyclic successor of ``index``."""
        return (index + 1) % len(self.programs)

    def index_of(self, program_id: str) -> int | None:
        """Return the index of the program with the given id."""
        for index, program in enumerate(self.programs):
            if program.id == program_id:
                return index
        return None

    def get(self, program_id: str) -> Program | None:
        """Return the program with the given id."""
        index = self.index_of(program_id)
        return None if index is None else self.programs[index]


@dataclass(frozen=True)
class ChannelConfig(DataClassORJSONMixin):
    """
    Immutable configuration of one virtual channel.

    Changing ``epoch_ms`` while viewers are watching reshuffles every
    viewer's position at once. Treat it as a breaking configuration change.
    """

    schedule: Schedule
    epoch_ms: int = DEFAULT_EPOCH_MS
    name: str = "Simulcast"

    def __post_init__(self) -> None:
        """Validate the epoch type."""
        if isinstance(self.epoch_ms, bool) or not isinstance(self.epoch_ms, int):
            raise ScheduleError("epoch_ms must be an integer timestamp in milliseconds")

    @classmethod
    def from_programs(
        cls,
        programs: list[Program] | tuple[Program, ...],
        *,
        epoch_ms: int = DEFAULT_EPOCH_MS,
        name: str = "Simulcast",
    ) -> ChannelConfig:
        """Build a channel from a plain sequence of programs."""
        return cls(schedule=Schedule(programs=tuple(programs)), epoch_ms=epoch_ms, name=name)

    def with_epoch(self, epoch_ms: int) -> ChannelConfig:
        """Return a copy of this channel using a different epoch."""
        return ChannelConfig(schedule=self.schedule, epoch_ms=epoch_ms, name=self.name)


def epoch_from_iso(value: str) -> int:
    """Parse an ISO-8601 timestamp into epoch milliseconds, assuming UTC when naive."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return round(parsed.timestamp() * 1000)


def parse_channel(data: str | bytes) -> ChannelConfig:
    """
    Decode a channel from JSON.

    Raises:
        ScheduleError: If the JSON is malformed or violates a schedule invariant.
    """
    try:
        return ChannelConfig.from_json(data)
    except ScheduleError:
        raise
    except (ValueError, LookupError, TypeError) as err:
        # mashumaro wraps errors raised while building nested fields
        cause = err.__cause__ or err.__context__
        if isinstance(cause, ScheduleError):
            raise ScheduleError(str(cause)) from err
        raise ScheduleError(f"Invalid channel data: {err}") from err


def load_channel(path: str | Path) -> ChannelConfig:
    """Load a channel from a JSON file."""
    return parse_channel(Path(path).read_bytes())


def default_channel() -> ChannelConfig:
    """Return the channel bundled with the package."""
    data = resources.files("aiosimulcast").joinpath("data", "channel.json").read_bytes()
    return parse_channel(data)
