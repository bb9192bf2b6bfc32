from __future__ import annotations

from fastapi import HTTPException, status
from starlette.requests import HTTPConnection

from rce_bridge.manager import SessionManager


def get_manager(conn: HTTPConnection) -> SessionManager:
    manager = getattr(conn.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session manager not ready")
    return manager
