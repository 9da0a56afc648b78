"""Tests for the HTTP distribution interface."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from aiohttp.test_utils import TestClient, TestServer

from aiosimulcast.models.schedule import ChannelConfig
from aiosimulcast.server import SimulcastServer

from .conftest import T0, FakeClock


@pytest.fixture
async def client(config: ChannelConfig, clock: FakeClock) -> AsyncIterator[TestClient]:
    clock.set(185)
    server = SimulcastServer(config, clock=clock)
    async with TestClient(TestServer(server.app)) as test_client:
        yield test_client


async def test_current(client: TestClient) -> None:
    resp = await client.get("/api/current")

    assert resp.status == 200
    assert resp.headers["Cache-Control"].startswith("no-store")
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    body = await resp.json()
    assert body["success"] is True
    assert body["server_timestamp"] == T0 + 185_000
    data = body["data"]
    assert data["program"]["id"] == "B"
    assert data["current_time"] == 5
    assert data["exact_time"] == 5.0
    assert data["time_remaining"] == 205
    assert data["program_index"] == 1
    assert data["next_program"]["id"] == "C"
    assert data["cycle_position"] == 185
    assert data["total_duration"] == 585
    assert data["epoch_start"] == T0
    assert data["total_programs"] == 3
    assert data["is_first_in_cycle"] is False
    assert data["is_last_in_cycle"] is False
    assert data["next_program_start_time"] == T0 + 390_000


async def test_current_wraps_at_cycle_end(client: TestClient, clock: FakeClock) -> None:
    clock.set(585)

    body = await (await client.get("/api/current")).json()

    assert body["data"]["program"]["id"] == "A"
    assert body["data"]["current_time"] == 0
    assert body["data"]["is_first_in_cycle"] is True


async def test_upcoming(client: TestClient) -> None:
    resp = await client.get("/api/upcoming", params={"count": "2"})

    assert resp.status == 200
    data = (await resp.json())["data"]
    assert data["current"]["id"] == "B"
    assert data["current_index"] == 1
    assert data["current_time"] == 5
    assert data["time_remaining"] == 205
    assert data["will_wrap_to_first"] is False
    assert [entry["program"]["id"] for entry in data["upcoming"]] == ["C", "A"]
    assert [entry["first_in_next_cycle"] for entry in data["upcoming"]] == [False, True]
    assert [entry["wraps"] for entry in data["upcoming"]] == [False, True]
    assert data["next_start_times"] == [205, 400]
    assert data["next_start_absolute"] == [T0 + 390_000, T0 + 585_000]
    assert data["program_indices"] == [2, 0]


async def test_upcoming_defaults_to_ten(client: TestClient) -> None:
    data = (await (await client.get("/api/upcoming")).json())["data"]

    assert len(data["upcoming"]) == 10
    assert data["program_indices"] == [2, 0, 1, 2, 0, 1, 2, 0, 1, 2]


async def test_upcoming_from_last_program(client: TestClient, clock: FakeClock) -> None:
    clock.set(400)

    data = (await (await client.get("/api/upcoming?count=1")).json())["data"]

    assert data["is_last_in_cycle"] is True
    assert data["will_wrap_to_first"] is True
    assert data["upcoming"][0]["program"]["id"] == "A"
    assert data["upcoming"][0]["first_in_next_cycle"] is True


@pytest.mark.parametrize("count", ["abc", "-1", "101", "1.5"])
async def test_upcoming_rejects_bad_count(client: TestClient, count: str) -> None:
    resp = await client.get("/api/upcoming", params={"count": count})

    assert resp.status == 400
    body = await resp.json()
    assert body["success"] is False
    assert body["error"]


async def test_preflight(client: TestClient) -> None:
    resp = await client.options("/api/current")

    assert resp.status == 204
    assert resp.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"

