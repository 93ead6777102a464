import asyncio
from datetime import datetime, timezone

import pytest
from aiohttp.test_utils import TestClient, TestServer

from cctrack.broadcast import Broadcaster
from cctrack.models import AppState, UsageRecord
from cctrack.server import create_app, main


def _record():
    return UsageRecord(
        request_id="req-1",
        session_id="session-1",
        project="org/project",
        model="claude-sonnet-4-6",
        input_tokens=1000,
        output_tokens=200,
        cache_write_tokens=0,
        cache_read_tokens=0,
        cost_input=0.003,
        cost_output=0.003,
        cost_cache_write=0.0,
        cost_cache_read=0.0,
        total_cost=0.006,
        timestamp=datetime.now(timezone.utc),
    )


def _client(state=None, broadcaster=None):
    state = state if state is not None else AppState(records=[_record()])
    broadcaster = broadcaster if broadcaster is not None else Broadcaster(16)
    return TestClient(TestServer(create_app(state, broadcaster)))


@pytest.mark.asyncio
async def test_rate_card_endpoint():
    async with _client() as client:
        resp = await client.get("/api/rate-card")
        assert resp.status == 200
        data = await resp.json()
    assert [entry["model"] for entry in data] == ["claude-opus-4", "claude-sonnet-4", "claude-haiku-4"]
    assert data[0]["input_per_mtok"] == 15.0


@pytest.mark.asyncio
async def test_sessions_endpoint():
    async with _client() as client:
        data = await (await client.get("/api/sessions")).json()
    assert [s["id"] for s in data] == ["session-1"]
    assert data[0]["total_tokens"] == 1200
    assert data[0]["cost"] == pytest.approx(0.006)


@pytest.mark.asyncio
async def test_projects_endpoint():
    async with _client() as client:
        data = await (await client.get("/api/projects")).json()
    assert [p["name"] for p in data] == ["org/project"]
    assert data[0]["models"] == ["claude-sonnet-4-6"]
    assert data[0]["subprojects"] == []


@pytest.mark.asyncio
async def test_overview_endpoint():
    async with _client() as client:
        data = await (await client.get("/api/overview")).json()
    assert len(data["daily_spend"]) == 14
    assert len(data["hourly_spend"]) == 24
    assert data["month"]["cost"] == pytest.approx(0.006)
    assert data["recent_sessions"][0]["id"] == "session-1"


@pytest.mark.asyncio
async def test_cors_header_on_get():
    async with _client() as client:
        resp = await client.get("/api/rate-card", headers={"Origin": "http://localhost:3000"})
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_cors_preflight():
    headers = {"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"}
    async with _client() as client:
        resp = await client.options("/api/overview", headers=headers)
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Methods"] == "*"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_unknown_route_is_not_found():
    async with _client() as client:
        resp = await client.get("/api/missing")
        assert resp.status == 404
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_websocket_sends_snapshot_then_broadcasts():
    broadcaster = Broadcaster(16)
    async with _client(broadcaster=broadcaster) as client:
        ws = await client.ws_connect("/ws")
        snapshot = await ws.receive_json(timeout=5)
        assert snapshot["recent_sessions"][0]["id"] == "session-1"
        assert broadcaster.send("hello") == 1
        assert await ws.receive_str(timeout=5) == "hello"
        await ws.close()


@pytest.mark.asyncio
async def test_websocket_close_unsubscribes():
    broadcaster = Broadcaster(16)
    async with _client(broadcaster=broadcaster) as client:
        ws = await client.ws_connect("/ws")
        await ws.receive_json(timeout=5)
        await ws.close()
        delivered = broadcaster.send("ping")
        for _ in range(50):
            if delivered == 0:
                break
            await asyncio.sleep(0.05)
            delivered = broadcaster.send("ping")
    assert delivered == 0


def test_main_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--help"])
    assert excinfo.value.code == 0
    assert "--port" in capsys.readouterr().out


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as excinfo:
        main(["--port", "abc"])
    assert excinfo.value.code == 2