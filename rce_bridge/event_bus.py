from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import redis

from rce_bridge.core.events import DomainEvent
from rce_bridge.infra.redis_client import event_channel
from rce_bridge.websocket_hub import SessionWebSocketHub

logger = logging.getLogger(__name__)

Listener = Callable[[DomainEvent], None]


def publish_event(*, r: redis.Redis, event: DomainEvent) -> int:
    """Publish one event on the session's pub/sub channel; returns receiver count."""

    payload = json.dumps(event.to_message(), default=str)
    return int(r.publish(event_channel(event.identifier), payload))


class EventBus:
    """Fans domain events out to listeners, WebSocket clients and redis.

    Delivery is best-effort: a failing listener or an unreachable redis is
    logged and never stops the other sinks.
    """

    def __init__(self, *, hub: SessionWebSocketHub | None = None, r: redis.Redis | None = None) -> None:
        self._listeners: list[Listener] = []
        self._hub = hub
        self._redis = r
        self._broadcasts: set[asyncio.Task[Any]] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: DomainEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[%s] Event listener failed for %s", event.identifier, event.type.value)

        if self._redis is not None:
            try:
                publish_event(r=self._redis, event=event)
            except redis.RedisError as e:
                logger.warning("[%s] Failed To Publish Event %s: %s", event.identifier, event.type.value, e)

        if self._hub is not None:
            self._schedule(self._hub.broadcast(event.identifier, event.to_message()))

    def detach(self, identifier: str) -> None:
        """Close the WebSocket clients of a session that was removed."""

        if self._hub is not None:
            self._schedule(self._hub.close_session(identifier))

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcasts.discard)

    async def drain(self) -> None:
        """Wait for scheduled WebSocket broadcasts and closes to finish."""

        while self._broadcasts:
            await asyncio.gather(*list(self._broadcasts), return_exceptions=True)
