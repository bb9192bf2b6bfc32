from fastapi import FastAPI
import logging

from rce_bridge.api.routes import router
from rce_bridge.config import settings_from_env
from rce_bridge.event_bus import EventBus
from rce_bridge.infra.auth import StaticTokenSource
from rce_bridge.infra.portal_client import PortalClient
from rce_bridge.infra.redis_client import create_redis
from rce_bridge.manager import SessionManager
from rce_bridge.websocket_hub import hub

app = FastAPI(title="rce-bridge", version="0.1.0")
app.include_router(router)

settings = settings_from_env()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


def build_manager() -> SessionManager:
    r = create_redis(settings.redis_url) if settings.redis_url else None
    portal = PortalClient(
        api_url=settings.api_url,
        retries=settings.http_retries,
        retry_delay_s=settings.http_retry_delay_s,
    )
    return SessionManager(
        settings=settings,
        portal=portal,
        tokens=StaticTokenSource(access_token=settings.access_token),
        events=EventBus(hub=hub, r=r),
    )


@app.on_event("startup")
async def _startup() -> None:
    # Tests install their own manager before the app starts.
    if getattr(app.state, "manager", None) is None:
        app.state.manager = build_manager()
        logger.info("Session manager ready (portal: %s)", settings.api_url)


@app.on_event("shutdown")
async def _shutdown() -> None:
    manager = getattr(app.state, "manager", None)
    app.state.manager = None
    if manager is not None:
        await manager.aclose()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "rce-bridge", "version": "0.1.0"}
