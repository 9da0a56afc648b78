"""Shared fixtures: a three-program channel, a controllable clock and a fake player."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from aiosimulcast.client.player import EndCallback, ErrorCallback, PlayerCapabilities
from aiosimulcast.exceptions import PlayerError
from aiosimulcast.models.schedule import ChannelConfig, Program

T0 = 1_700_000_000_000


class FakeClock:
    """Wall clock in epoch milliseconds that only moves when told to."""

    def __init__(self, value: int = T0) -> None:
        self.value = value

    def __call__(self) -> int:
        return self.value

    def set(self, seconds_after_epoch: float) -> None:
        self.value = T0 + round(seconds_after_epoch * 1000)

    def advance(self, seconds: float) -> None:
        self.value += round(seconds * 1000)


class FakePlayer:
    """Records every command; position only changes on load/seek or when set by a test."""

    def __init__(self, capabilities: PlayerCapabilities | None = None) -> None:
        self._capabilities = capabilities or PlayerCapabilities()
        self.available = True
        self.commands: list[tuple[Any, ...]] = []
        self.media_ref: str | None = None
        self.offset: float | None = None
        self.fail_load = False
        self.gate: asyncio.Event | None = None
        self.end_callbacks: list[EndCallback] = []
        self.error_callbacks: list[ErrorCallback] = []

    @property
    def capabilities(self) -> PlayerCapabilities:
        return self._capabilities

    @property
    def corrections(self) -> list[tuple[Any, ...]]:
        return [cmd for cmd in self.commands if cmd[0] in ("load", "seek")]

    async def load(self, media_ref: str, start_offset: float) -> None:
        self.commands.append(("load", media_ref, start_offset))
        if self.fail_load:
            raise PlayerError("load failed")
        if self.gate is not None:
            await self.gate.wait()
        self.media_ref = media_ref
        self.offset = start_offset

    async def seek(self, offset: float) -> None:
        self.commands.append(("seek", offset))
        if self.gate is not None:
            await self.gate.wait()
        self.offset = offset

    def current_offset(self) -> float | None:
        return self.offset

    async def mute(self) -> None:
        self.commands.append(("mute",))

    async def unmute(self) -> None:
        self.commands.append(("unmute",))

    async def set_volume(self, volume: int) -> None:
        self.commands.append(("volume", volume))

    def add_end_listener(self, callback: EndCallback) -> Callable[[], None]:
        self.end_callbacks.append(callback)
        return lambda: self.end_callbacks.remove(callback)

    def add_error_listener(self, callback: ErrorCallback) -> Callable[[], None]:
        self.error_callbacks.append(callback)
        return lambda: self.error_callbacks.remove(callback)

    def fire_end(self) -> None:
        for callback in list(self.end_callbacks):
            callback()

    def fire_error(self, error: Exception) -> None:
        for callback in list(self.error_callbacks):
            callback(error)


async def settle(rounds: int = 5) -> None:
    """Let spawned tasks and call_soon callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config() -> ChannelConfig:
    """Channel A:180s, B:210s, C:195s starting at T0."""
    return ChannelConfig.from_programs(
        [
            Program(id="A", media_ref="media-a", title="Program A", duration=180),
            Program(id="B", media_ref="media-b", title="Program B", duration=210),
            Program(id="C", media_ref="media-c", title="Program C", duration=195),
        ],
        epoch_ms=T0,
        name="Test Channel",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()
