from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from conftest import FakePortal, build_manager, log_line
from rce_bridge.config import Settings
from rce_bridge.main import app


@pytest.fixture()
def client(portal: FakePortal, settings: Settings) -> Generator[TestClient, None, None]:
    app.state.manager = build_manager(portal=portal, settings=settings)
    with TestClient(app) as c:
        yield c
    app.state.manager = None


def _add(client: TestClient, identifier: str = "srv", **extra: object) -> dict:
    body = {"identifier": identifier, "server_id": [1234567, 9001], "region": "EU", **extra}
    res = client.post("/sessions", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_healthcheck_and_info(client: TestClient) -> None:
    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "rce-bridge"


def test_session_crud(client: TestClient) -> None:
    created = _add(client)
    assert created["identifier"] == "srv"
    assert created["server_id"] == [1234567, 9001]
    assert created["status"] == "RUNNING"

    listed = client.get("/sessions").json()
    assert [s["identifier"] for s in listed["sessions"]] == ["srv"]
    assert client.get("/sessions/srv").json()["region"] == "EU"

    assert client.delete("/sessions/srv").status_code == 204
    assert client.get("/sessions/srv").status_code == 404
    assert client.delete("/sessions/srv").status_code == 404


def test_add_refusal_is_422(client: TestClient, portal: FakePortal) -> None:
    portal.status = "SUSPENDED"

    res = client.post("/sessions", json={"identifier": "srv", "server_id": 1234567, "region": "EU"})

    assert res.status_code == 422
    assert "srv" in res.json()["detail"]


def test_invalid_body_is_422(client: TestClient) -> None:
    res = client.post("/sessions", json={"identifier": "srv", "server_id": 1234567, "region": "ASIA"})
    assert res.status_code == 422


def test_command_route(client: TestClient, portal: FakePortal) -> None:
    _add(client)

    res = client.post("/sessions/srv/command", json={"command": "say hello"})

    assert res.status_code == 200
    assert res.json() == {"ok": True, "response": None, "error": None}
    assert portal.sent == ["say hello"]
    assert client.post("/sessions/nope/command", json={"command": "x"}).status_code == 404


def test_serverinfo_without_output_is_502(client: TestClient) -> None:
    _add(client)

    assert client.get("/sessions/srv/serverinfo").status_code == 502


def test_console_and_status_ingest(client: TestClient) -> None:
    _add(client)

    # First batch is the backlog.
    res = client.post("/sessions/srv/console", json={"message": log_line("old")})
    assert res.status_code == 202
    assert res.json() == {"events": 0}

    res = client.post("/sessions/srv/console", json={"message": log_line("Bob was killed by 12345")})
    assert res.json() == {"events": 2}

    res = client.post("/sessions/srv/status", json={"status": "STOPPING"})
    assert res.status_code == 202
    assert res.json() == {"status": "STOPPING", "lifecycle": "down"}
    assert client.get("/sessions/srv").json()["status"] == "STOPPING"

    assert client.post("/sessions/srv/status", json={"status": "BOGUS"}).status_code == 422


def test_start_stop_routes(client: TestClient, portal: FakePortal) -> None:
    _add(client)

    assert client.post("/sessions/srv/stop", params={"force": True}).json() == {"ok": True}
    assert client.post("/sessions/srv/start").json() == {"ok": True}
    assert portal.operations[-2:] == ["stopService", "restartService"]


def test_advanced_route(client: TestClient, portal: FakePortal) -> None:
    _add(client)

    res = client.get("/sessions/srv/advanced")

    assert res.status_code == 200
    assert res.json()["service"]["currentState"]["state"] == "RUNNING"
    assert client.get("/sessions/nope/advanced").status_code == 404


def test_servers_route(client: TestClient) -> None:
    res = client.get("/servers", params={"region": "EU"})

    assert res.status_code == 200
    assert res.json() == [
        {"name": "Rusty EU", "raw_name": "<color=red>Rusty</color> EU", "region": "EU", "server_id": [1234567, 9001]}
    ]
    assert client.get("/servers", params={"region": "ASIA"}).status_code == 422
