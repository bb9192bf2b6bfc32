from __future__ import annotations

import httpx
import pytest

from rce_bridge.infra.http_retry import request_with_retry


def _client(responses: list[int | Exception], calls: list[int]) -> httpx.AsyncClient:
    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome)

    return httpx.AsyncClient(transport=httpx.MockTransport(_handler))


@pytest.mark.asyncio
async def test_retries_gateway_errors_then_succeeds() -> None:
    calls: list[int] = []
    async with _client([503, 504, 200], calls) as client:
        response = await request_with_retry(client, "POST", "https://portal.test/", retry_delay_s=0)

    assert response.status_code == 200
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_returns_last_gateway_error_when_exhausted() -> None:
    calls: list[int] = []
    async with _client([502, 502, 502, 200], calls) as client:
        response = await request_with_retry(client, "POST", "https://portal.test/", retries=2, retry_delay_s=0)

    assert response.status_code == 502
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    calls: list[int] = []
    async with _client([500, 200], calls) as client:
        response = await request_with_retry(client, "POST", "https://portal.test/", retry_delay_s=0)

    assert response.status_code == 500
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_network_errors_are_retried_then_raised() -> None:
    calls: list[int] = []
    errors: list[int | Exception] = [httpx.ConnectError("refused") for _ in range(3)]
    async with _client(errors, calls) as client:
        with pytest.raises(httpx.ConnectError):
            await request_with_retry(client, "POST", "https://portal.test/", retry_delay_s=0)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_linear_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    import rce_bridge.infra.http_retry as http_retry

    delays: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(http_retry.asyncio, "sleep", _fake_sleep)

    calls: list[int] = []
    async with _client([502, 502, 200], calls) as client:
        await request_with_retry(client, "POST", "https://portal.test/", retry_delay_s=1.0)

    assert delays == [1.0, 2.0]
