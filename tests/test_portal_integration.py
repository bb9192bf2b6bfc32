from __future__ import annotations

import os

import pytest

from rce_bridge.config import settings_from_env
from rce_bridge.infra.portal_client import PortalClient


@pytest.mark.asyncio
async def test_live_portal_status() -> None:
    """Read-only check against the real portal.

    Skipped unless RCE_ACCESS_TOKEN and RCE_TEST_SERVER_ID (public id) are set,
    e.g. via a local `.env`. Region defaults to EU (RCE_TEST_REGION).
    """

    token = os.environ.get("RCE_ACCESS_TOKEN")
    server_id = os.environ.get("RCE_TEST_SERVER_ID")
    if not token or not server_id:
        pytest.skip("Set RCE_ACCESS_TOKEN and RCE_TEST_SERVER_ID to check the live portal")

    settings = settings_from_env()
    region = os.environ.get("RCE_TEST_REGION", "EU")
    portal = PortalClient(api_url=settings.api_url)
    try:
        sid = await portal.resolve_sid(token=token, gameserver_id=int(server_id), region=region)
        status = await portal.fetch_status(token=token, sid=sid, region=region)
    finally:
        await portal.aclose()

    assert sid > 0
    assert status
