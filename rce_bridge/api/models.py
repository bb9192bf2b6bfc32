from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

Region = Literal["EU", "US"]


class ServerStatus(StrEnum):
    running = "RUNNING"
    starting = "STARTING"
    stopping = "STOPPING"
    stopped = "STOPPED"
    maintenance = "MAINTENANCE"
    updating = "UPDATING"
    reinstalling = "REINSTALLING"
    suspended = "SUSPENDED"


class PollerToggles(BaseModel):
    player_refreshing: bool = False
    radio_refreshing: bool = False
    extended_event_refreshing: bool = False


class SessionOptions(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=128)
    # Public id alone, or [public id, internal id] when the internal id is known.
    server_id: int | list[int]
    region: Region
    player_refreshing: bool = False
    radio_refreshing: bool = False
    extended_event_refreshing: bool = False
    silent: bool = False
    # Opaque caller metadata; never interpreted here.
    state: list[Any] = Field(default_factory=list)


class Session(BaseModel):
    identifier: str
    # [public id, internal id]
    server_id: list[int]
    region: Region
    status: ServerStatus

    refreshing: PollerToggles = Field(default_factory=PollerToggles)

    players: list[str] = Field(default_factory=list)
    frequencies: list[int] = Field(default_factory=list)

    # Short-lived markers, e.g. INIT_LOGS once the backlog batch was consumed,
    # or BRADLEY / HELICOPTER while debris is on the map.
    flags: list[str] = Field(default_factory=list)

    state: list[Any] = Field(default_factory=list)
    silent: bool = False

    @property
    def internal_id(self) -> int:
        return self.server_id[1]

    @property
    def is_running(self) -> bool:
        return self.status == ServerStatus.running


class CommandResponse(BaseModel):
    """Outcome of a console command.

    - ok and response set: the command produced output
    - ok and response None: sent, no output was correlated
    - not ok: error carries the reason
    """

    ok: bool
    response: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, response: str | None = None) -> "CommandResponse":
        return cls(ok=True, response=response)

    @classmethod
    def failure(cls, error: str) -> "CommandResponse":
        return cls(ok=False, error=error)


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1, max_length=4000)
    response: bool = False


class ConsoleBatch(BaseModel):
    message: str = ""


class StatusChange(BaseModel):
    status: ServerStatus


class SessionListResponse(BaseModel):
    sessions: list[Session]


class FetchedServer(BaseModel):
    """A Rust console server found on the account, ready to be passed to `POST /sessions`."""

    name: str
    raw_name: str
    region: Region
    # [public id] or [public id, internal id]
    server_id: list[int]
