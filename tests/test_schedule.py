"""Tests for channel data loading and validation."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from aiosimulcast.exceptions import ScheduleError
from aiosimulcast.models.schedule import (
    DEFAULT_EPOCH_MS,
    ChannelConfig,
    Program,
    Schedule,
    default_channel,
    epoch_from_iso,
    load_channel,
    parse_channel,
)


def _program(program_id: str, duration: int = 60) -> Program:
    return Program(
        id=program_id, media_ref=f"media-{program_id}", title=program_id, duration=duration
    )


def test_empty_schedule_is_rejected() -> None:
    with pytest.raises(ScheduleError):
        Schedule(programs=())


@pytest.mark.parametrize("duration", [0, -5])
def test_non_positive_duration_is_rejected(duration: int) -> None:
    with pytest.raises(ScheduleError):
        _program("a", duration)


def test_duplicate_program_ids_are_rejected() -> None:
    with pytest.raises(ScheduleError, match="Duplicate"):
        Schedule(programs=(_program("a"), _program("a")))


def test_schedule_lookup_helpers() -> None:
    schedule = Schedule(programs=(_program("a", 10), _program("b", 20), _program("c", 30)))

    assert len(schedule) == 3
    assert schedule.total_duration == 60
    assert schedule.successor(2) == 0
    assert schedule.index_of("b") == 1
    assert schedule.index_of("missing") is None
    assert schedule.get("c") == schedule[2]
    assert [program.id for program in schedule] == ["a", "b", "c"]


def test_schedule_accepts_a_list() -> None:
    schedule = Schedule(programs=[_program("a")])  # type: ignore[arg-type]

    assert isinstance(schedule.programs, tuple)


def test_parse_channel() -> None:
    data = orjson.dumps(
        {
            "name": "Test",
            "epoch_ms": 1000,
            "schedule": {
                "programs": [
                    {"id": "1", "media_ref": "abc", "title": "One", "duration": 30},
                    {
                        "id": "2",
                        "media_ref": "def",
                        "title": "Two",
                        "duration": 45,
                        "category": "Lecture",
                    },
                ]
            },
        }
    )

    config = parse_channel(data)

    assert config.name == "Test"
    assert config.epoch_ms == 1000
    assert config.schedule.total_duration == 75
    assert config.schedule[1].category == "Lecture"
    assert config.schedule[0].description == ""


def test_parse_channel_defaults_epoch() -> None:
    program = {"id": "1", "media_ref": "x", "title": "t", "duration": 5}
    data = orjson.dumps({"schedule": {"programs": [program]}})

    assert parse_channel(data).epoch_ms == DEFAULT_EPOCH_MS


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"{}",
        b'{"schedule": {"programs": []}}',
        orjson.dumps(
            {"schedule": {"programs": [{"id": "1", "media_ref": "x", "title": "t", "duration": 0}]}}
        ),
        b'{"schedule": {"programs": [{"id": "1", "title": "t", "duration": 5}]}}',
    ],
)
def test_parse_channel_rejects_invalid_data(data: bytes) -> None:
    with pytest.raises(ScheduleError):
        parse_channel(data)


def test_load_channel_from_file(tmp_path: Path) -> None:
    config = ChannelConfig.from_programs([_program("a", 10)], epoch_ms=5, name="File")
    path = tmp_path / "channel.json"
    path.write_bytes(config.to_jsonb())

    loaded = load_channel(path)

    assert loaded == config


def test_default_channel() -> None:
    config = default_channel()

    assert config.epoch_ms == DEFAULT_EPOCH_MS
    assert len(config.schedule) == 5
    assert config.schedule.total_duration == 5820 + 3600 + 37 + 1800 + 2400


def test_with_epoch_keeps_schedule() -> None:
    config = ChannelConfig.from_programs([_program("a")], epoch_ms=0)

    moved = config.with_epoch(1234)

    assert moved.epoch_ms == 1234
    assert moved.schedule is config.schedule
    assert config.epoch_ms == 0


def test_epoch_from_iso() -> None:
    assert epoch_from_iso("2023-01-01T00:00:00Z") == DEFAULT_EPOCH_MS
    assert epoch_from_iso("2023-01-01T00:00:00") == DEFAULT_EPOCH_MS
    assert epoch_from_iso("2023-01-01T02:00:00+02:00") == DEFAULT_EPOCH_MS
