from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from rce_bridge.api.models import Session

logger = logging.getLogger(__name__)


class SessionNotFoundError(ValueError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Session not found: {identifier}")
        self.identifier = identifier


@dataclass(slots=True)
class SessionTimers:
    """Timer handles owned by one session; all cancelled when it is removed."""

    pollers: dict[str, asyncio.Task[None]] = field(default_factory=dict)
    flag_expiries: dict[str, asyncio.TimerHandle] = field(default_factory=dict)

    def cancel_all(self) -> None:
        for task in self.pollers.values():
            task.cancel()
        for handle in self.flag_expiries.values():
            handle.cancel()
        self.pollers.clear()
        self.flag_expiries.clear()


class SessionRegistry:
    """In-memory session snapshots.

    `get` hands out a copy; changes only land through `update`, which replaces
    the stored snapshot (last writer wins). Re-fetch right before mutating.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._timers: dict[str, SessionTimers] = {}

    def add(self, session: Session) -> SessionTimers:
        if session.identifier in self._sessions:
            raise ValueError(f"Session already exists: {session.identifier}")
        self._sessions[session.identifier] = session.model_copy(deep=True)
        timers = SessionTimers()
        self._timers[session.identifier] = timers
        return timers

    def get(self, identifier: str) -> Session | None:
        session = self._sessions.get(identifier)
        return session.model_copy(deep=True) if session is not None else None

    def require(self, identifier: str) -> Session:
        session = self.get(identifier)
        if session is None:
            raise SessionNotFoundError(identifier)
        return session

    def update(self, session: Session) -> bool:
        # Late writers (a poll finishing after removal) must not resurrect a session.
        if session.identifier not in self._sessions:
            logger.debug("[%s] Ignoring update for removed session", session.identifier)
            return False
        logger.debug("[%s] Updating Session", session.identifier)
        self._sessions[session.identifier] = session.model_copy(deep=True)
        return True

    def remove(self, identifier: str) -> Session | None:
        timers = self._timers.pop(identifier, None)
        if timers is not None:
            timers.cancel_all()
        return self._sessions.pop(identifier, None)

    def timers(self, identifier: str) -> SessionTimers | None:
        return self._timers.get(identifier)

    def identifiers(self) -> list[str]:
        return list(self._sessions)

    def list_sessions(self) -> list[Session]:
        return [s.model_copy(deep=True) for s in self._sessions.values()]

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
