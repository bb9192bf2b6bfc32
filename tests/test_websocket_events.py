from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from conftest import FakePortal, add_session, build_manager, log_line
from rce_bridge.config import Settings
from rce_bridge.event_bus import EventBus
from rce_bridge.main import app
from rce_bridge.websocket_hub import SessionWebSocketHub


class RecordingSocket:
    """Records the ASGI-facing calls the hub makes; accept blocks until released."""

    def __init__(self) -> None:
        self.calls: list[Any] = []
        self.accepting = asyncio.Event()
        self.release_accept = asyncio.Event()

    async def accept(self) -> None:
        self.accepting.set()
        await self.release_accept.wait()
        self.calls.append("accept")

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.calls.append("send")

    async def close(self, code: int = 1000) -> None:
        self.calls.append(("close", code))


@pytest.mark.asyncio
async def test_hub_never_sends_before_accept() -> None:
    local_hub = SessionWebSocketHub()
    ws = RecordingSocket()

    connecting = asyncio.create_task(local_hub.connect("srv", ws))  # type: ignore[arg-type]
    await ws.accepting.wait()
    await local_hub.broadcast("srv", {"type": "message"})
    ws.release_accept.set()
    await connecting
    await local_hub.broadcast("srv", {"type": "message"})

    assert ws.calls == ["accept", "send"]


@pytest.mark.asyncio
async def test_hub_close_session_closes_and_forgets_clients() -> None:
    local_hub = SessionWebSocketHub()
    ws = RecordingSocket()
    ws.release_accept.set()
    await local_hub.connect("srv", ws)  # type: ignore[arg-type]

    assert await local_hub.close_session("srv") == 1
    await local_hub.broadcast("srv", {"type": "message"})

    assert ws.calls == ["accept", ("close", 1000)]
    assert await local_hub.close_session("srv") == 0


@pytest.mark.asyncio
async def test_removing_a_session_closes_its_sockets(portal: FakePortal, settings: Settings) -> None:
    local_hub = SessionWebSocketHub()
    manager = build_manager(portal=portal, settings=settings, events=EventBus(hub=local_hub))
    try:
        await add_session(manager)
        ws = RecordingSocket()
        ws.release_accept.set()
        await local_hub.connect("srv", ws)  # type: ignore[arg-type]

        assert manager.remove("srv")
        await manager.events.drain()

        assert ws.calls[-1] == ("close", 1000)
    finally:
        await manager.aclose()


def test_ws_session_events_broadcast(portal: FakePortal, settings: Settings) -> None:
    app.state.manager = build_manager(portal=portal, settings=settings)
    with TestClient(app) as client:
        res = client.post("/sessions", json={"identifier": "srv", "server_id": [1234567, 9001], "region": "EU"})
        assert res.status_code == 201
        client.post("/sessions/srv/console", json={"message": log_line("backlog")})

        with client.websocket_connect("/ws/sessions/srv") as ws:
            res = client.post("/sessions/srv/console", json={"message": log_line("PlayerName was killed by 12345")})
            assert res.status_code == 202

            msg = ws.receive_json()
            assert msg["type"] == "message"
            assert msg["identifier"] == "srv"
            assert msg["message"] == "PlayerName was killed by 12345"

            msg = ws.receive_json()
            assert msg["type"] == "player_kill"
            assert msg["killer"]["type"] == "npc"
            assert msg["victim"]["type"] == "player"
    app.state.manager = None


def test_ws_unknown_session_is_refused(portal: FakePortal, settings: Settings) -> None:
    app.state.manager = build_manager(portal=portal, settings=settings)
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/sessions/missing"):
                pass
        assert exc.value.code == 1008
    app.state.manager = None


def test_ws_closed_when_session_removed(portal: FakePortal, settings: Settings) -> None:
    app.state.manager = build_manager(portal=portal, settings=settings)
    with TestClient(app) as client:
        res = client.post("/sessions", json={"identifier": "srv", "server_id": [1234567, 9001], "region": "EU"})
        assert res.status_code == 201

        with client.websocket_connect("/ws/sessions/srv") as ws:
            assert client.delete("/sessions/srv").status_code == 204
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 1000
    app.state.manager = None
