from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response, WebSocket, WebSocketDisconnect, status

from rce_bridge.api.deps import get_manager
from rce_bridge.api.models import (
    CommandRequest,
    CommandResponse,
    ConsoleBatch,
    FetchedServer,
    Region,
    Session,
    SessionListResponse,
    SessionOptions,
    StatusChange,
)
from rce_bridge.manager import SessionManager
from rce_bridge.session_store import SessionNotFoundError
from rce_bridge.websocket_hub import hub

router = APIRouter()


def _require(manager: SessionManager, identifier: str) -> Session:
    try:
        return manager.registry.require(identifier)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.websocket("/ws/sessions/{identifier}")
async def session_events_ws(
    websocket: WebSocket,
    identifier: str,
    manager: SessionManager = Depends(get_manager),
) -> None:
    if identifier not in manager.registry:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Session not found: {identifier}")
        return

    await hub.connect(identifier, websocket)

    try:
        # Keep the socket open; clients may send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(identifier, websocket)
    except Exception:
        await hub.disconnect(identifier, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/sessions", response_model=Session, status_code=status.HTTP_201_CREATED)
async def add_session_route(payload: SessionOptions, manager: SessionManager = Depends(get_manager)) -> Session:
    ok = await manager.add(payload)
    if not ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Failed to add session: {payload.identifier}",
        )
    return _require(manager, payload.identifier)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions_route(manager: SessionManager = Depends(get_manager)) -> SessionListResponse:
    return SessionListResponse(sessions=manager.list_sessions())


@router.get("/sessions/{identifier}", response_model=Session)
async def get_session_route(identifier: str, manager: SessionManager = Depends(get_manager)) -> Session:
    return _require(manager, identifier)


@router.delete("/sessions/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_session_route(identifier: str, manager: SessionManager = Depends(get_manager)) -> Response:
    if not manager.remove(identifier):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {identifier}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{identifier}/command", response_model=CommandResponse)
async def command_route(
    identifier: str,
    payload: CommandRequest,
    manager: SessionManager = Depends(get_manager),
) -> CommandResponse:
    _require(manager, identifier)
    return await manager.command(identifier, payload.command, response=payload.response)


@router.get("/sessions/{identifier}/serverinfo")
async def serverinfo_route(
    identifier: str,
    raw_hostname: bool = False,
    manager: SessionManager = Depends(get_manager),
) -> Any:
    _require(manager, identifier)
    info = await manager.info(identifier, raw_hostname=raw_hostname)
    if info is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch server info")
    return info


@router.get("/sessions/{identifier}/advanced")
async def advanced_route(identifier: str, manager: SessionManager = Depends(get_manager)) -> dict[str, Any]:
    _require(manager, identifier)
    advanced = await manager.fetch_advanced(identifier)
    if advanced is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch advanced information")
    return advanced


@router.get("/servers", response_model=list[FetchedServer])
async def servers_route(
    region: Region | None = None,
    manager: SessionManager = Depends(get_manager),
) -> list[FetchedServer]:
    """Servers on the account, e.g. to pick `server_id` for `POST /sessions`."""

    return await manager.fetch_servers(region)


@router.post("/sessions/{identifier}/start")
async def start_route(identifier: str, manager: SessionManager = Depends(get_manager)) -> dict[str, bool]:
    _require(manager, identifier)
    return {"ok": await manager.start(identifier)}


@router.post("/sessions/{identifier}/stop")
async def stop_route(
    identifier: str,
    force: bool = False,
    manager: SessionManager = Depends(get_manager),
) -> dict[str, bool]:
    _require(manager, identifier)
    return {"ok": await manager.stop(identifier, force=force)}


@router.post("/sessions/{identifier}/console", status_code=status.HTTP_202_ACCEPTED)
async def console_route(
    identifier: str,
    payload: ConsoleBatch,
    manager: SessionManager = Depends(get_manager),
) -> dict[str, int]:
    """Push-channel ingest: one raw console batch (newline-separated lines)."""

    _require(manager, identifier)
    events = manager.handle_console(identifier, payload.message)
    return {"events": len(events)}


@router.post("/sessions/{identifier}/status", status_code=status.HTTP_202_ACCEPTED)
async def status_route(
    identifier: str,
    payload: StatusChange,
    manager: SessionManager = Depends(get_manager),
) -> dict[str, str]:
    _require(manager, identifier)
    change = manager.handle_status(identifier, payload.status)
    if change is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {identifier}")
    return {"status": payload.status.value, "lifecycle": change.current}
