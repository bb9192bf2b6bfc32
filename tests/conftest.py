from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from rce_bridge.api.models import SessionOptions
from rce_bridge.config import Settings
from rce_bridge.core.events import DomainEvent
from rce_bridge.event_bus import EventBus
from rce_bridge.infra.auth import StaticTokenSource
from rce_bridge.infra.portal_client import PortalClient
from rce_bridge.manager import SessionManager
from rce_bridge.websocket_hub import hub


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    Makes RCE_ACCESS_TOKEN / RCE_TEST_SERVER_ID available to the live portal
    check without exporting them by hand. In CI `.env` is not loaded unless
    RCE_LOAD_DOTENV_FOR_TESTS=1, so the check stays skipped.
    """

    if os.environ.get("CI") and os.environ.get("RCE_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


def log_line(content: str, ts: str = "2024-05-01 12:00:00") -> str:
    """One console line in the push-channel format."""

    return f"{ts}:LOG:DEFAULT: {content}"


class FakePortal:
    """In-memory stand-in for the portal GraphQL endpoint and account pages (an httpx.MockTransport handler).

    `on_console` runs while the send request is still in flight, which is how
    tests feed console output "before the send call returns".
    """

    def __init__(self) -> None:
        self.status = "RUNNING"
        self.sid = 9001
        self.console_status_codes: list[int] = []
        self.console_ok = True
        self.replies: dict[str, str] = {}
        self.on_console: Callable[[str], None] | None = None
        self.sent: list[str] = []
        self.operations: list[str] = []
        # Account pages, keyed by region path segment.
        self.menus: dict[str, dict[str, Any]] = {
            "eur": {
                "items": [
                    {
                        "label": "Rust Console Edition",
                        "items": [{"label": "<color=red>Rusty</color> EU", "data": {"url": "/eur/server/rust-console/1234567"}}],
                    },
                    {"label": "Minecraft", "items": [{"label": "Blocks", "data": {"url": "/eur/server/minecraft/7654321"}}]},
                ]
            },
            "int": {"items": []},
        }
        self.service_ids: list[dict[str, int]] = [{"serverId": 1234567, "serviceId": 9001}]
        self.service_ids_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return self._page(request)

        body = json.loads(request.content)
        op = body["operationName"]
        variables = body["variables"]
        self.operations.append(op)

        if op == "sendConsoleMessage":
            message = variables["message"]
            self.sent.append(message)
            if self.console_status_codes:
                code = self.console_status_codes.pop(0)
                if code != 200:
                    return httpx.Response(code)
            if self.on_console is not None:
                self.on_console(message)
            return httpx.Response(200, json={"data": {"sendConsoleMessage": {"ok": self.console_ok}}})

        if op == "ctx":
            state = {"currentState": {"state": self.status}} if self.status else None
            return httpx.Response(200, json={"data": {"cfgContext": {"ns": {"service": state}}}})

        if op == "sid":
            return httpx.Response(200, json={"data": {"sid": self.sid}})

        if op == "stopService":
            return httpx.Response(200, json={"data": {"stopService": {"ok": True}}})

        if op == "restartService":
            return httpx.Response(200, json={"data": {"restartService": {"cfgContext": {"ns": {}}}}})

        return httpx.Response(400, json={"errors": [{"message": f"unknown operation {op}"}]})

    def _page(self, request: httpx.Request) -> httpx.Response:
        _, prefix, page = request.url.path.split("/", 2)
        self.operations.append(f"GET /{prefix}/{page}")
        if page == "menu/clouds" and prefix in self.menus:
            return httpx.Response(200, json=self.menus[prefix])
        if page == "serviceIds":
            if self.service_ids_status != 200:
                return httpx.Response(self.service_ids_status)
            return httpx.Response(200, json=self.service_ids)
        return httpx.Response(404)


@pytest.fixture()
def portal() -> FakePortal:
    return FakePortal()


@pytest.fixture()
def settings() -> Settings:
    # Short timers; pollers effectively never tick on their own.
    return Settings(
        api_url="https://portal.test/ngpapi/",
        access_token="test-token",
        command_timeout_s=0.2,
        player_interval_s=3600.0,
        radio_interval_s=3600.0,
        gibs_interval_s=3600.0,
        debris_flag_ttl_s=0.2,
        http_retries=2,
        http_retry_delay_s=0.0,
    )


def build_manager(*, portal: FakePortal, settings: Settings, events: EventBus | None = None) -> SessionManager:
    client = httpx.AsyncClient(transport=httpx.MockTransport(portal.handler))
    return SessionManager(
        settings=settings,
        portal=PortalClient(
            api_url=settings.api_url,
            client=client,
            retries=settings.http_retries,
            retry_delay_s=settings.http_retry_delay_s,
        ),
        tokens=StaticTokenSource(access_token=settings.access_token),
        events=events or EventBus(hub=hub),
    )


@pytest_asyncio.fixture()
async def manager(portal: FakePortal, settings: Settings) -> AsyncGenerator[SessionManager, None]:
    m = build_manager(portal=portal, settings=settings)
    try:
        yield m
    finally:
        await m.aclose()


@pytest.fixture()
def captured(manager: SessionManager) -> list[DomainEvent]:
    events: list[DomainEvent] = []
    manager.events.subscribe(events.append)
    return events


async def add_session(manager: SessionManager, identifier: str = "srv", *, bootstrap: bool = True, **opts: Any) -> None:
    """Register a running session without pollers; optionally consume its backlog batch."""

    ok = await manager.add(SessionOptions(identifier=identifier, server_id=[1234567, 9001], region="EU", **opts))
    assert ok
    if bootstrap:
        manager.handle_console(identifier, log_line("backlog"))
