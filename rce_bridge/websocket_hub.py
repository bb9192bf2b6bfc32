from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process WebSocket fan-out keyed by session identifier.

    Contract:
      - attach a client to a session via `connect(identifier, websocket)`.
      - push domain events with `broadcast(identifier, payload)`.
      - `close_session(identifier)` closes and forgets every client of a
        session that is no longer managed.

    Payloads must be JSON-serializable dicts. Clients that fail a send are dropped.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, identifier: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[identifier].add(websocket)

    async def disconnect(self, identifier: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(identifier)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(identifier, None)

    async def close_session(self, identifier: str, code: int = status.WS_1000_NORMAL_CLOSURE) -> int:
        async with self._lock:
            conns = self._by_session.pop(identifier, set())

        for ws in conns:
            try:
                await ws.close(code=code)
            except Exception as e:
                logger.debug("[%s] Websocket client already gone: %s", identifier, e)

        if conns:
            logger.debug("[%s] Closed %d websocket client(s)", identifier, len(conns))
        return len(conns)

    async def broadcast(self, identifier: str, payload: dict[str, Any]) -> None:
        async with self._lock:
            conns = list(self._by_session.get(identifier, ()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("[%s] Dropping websocket client: %s", identifier, e)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_session.get(identifier, set()).discard(ws)


# Singleton hub used by the API process.
hub = SessionWebSocketHub()
