from __future__ import annotations

import asyncio
from typing import Any

import httpx

RETRYABLE_STATUSES = frozenset({502, 503, 504})


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = 2,
    retry_delay_s: float = 1.0,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying gateway errors and network failures.

    The portal intermittently answers 502-504. Attempt `n` (0-based) waits
    `retry_delay_s * (n + 1)` before the next try. Any other status is returned
    as-is; the last network error is re-raised once retries are exhausted.
    """

    attempt = 0
    while True:
        try:
            response = await client.request(method, url, **kwargs)
            if response.is_success or attempt >= retries or response.status_code not in RETRYABLE_STATUSES:
                return response
        except httpx.TransportError:
            if attempt >= retries:
                raise
        await asyncio.sleep(retry_delay_s * (attempt + 1))
        attempt += 1
