from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    message = "message"
    executing_command = "executing_command"
    service_status = "service_status"

    player_joined = "player_joined"
    player_left = "player_left"
    player_list_updated = "player_list_updated"
    player_suicide = "player_suicide"
    player_respawned = "player_respawned"
    player_kill = "player_kill"
    player_role_add = "player_role_add"
    player_role_remove = "player_role_remove"
    quick_chat = "quick_chat"

    custom_zone_created = "custom_zone_created"
    custom_zone_removed = "custom_zone_removed"
    note_edit = "note_edit"
    vending_machine_name = "vending_machine_name"
    item_spawn = "item_spawn"
    kit_spawn = "kit_spawn"
    kit_give = "kit_give"

    team_create = "team_create"
    team_join = "team_join"
    team_invite = "team_invite"
    team_invite_cancel = "team_invite_cancel"
    team_leave = "team_leave"
    team_promoted = "team_promoted"

    special_event_set = "special_event_set"
    event_start = "event_start"
    frequency_gained = "frequency_gained"
    frequency_lost = "frequency_lost"


class KillType(StrEnum):
    player = "player"
    npc = "npc"
    other = "other"


@dataclass(frozen=True, slots=True)
class DomainEvent:
    type: EventType
    identifier: str
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, identifier: str, payload: dict[str, Any]) -> "DomainEvent":
        return DomainEvent(type=type, identifier=identifier, payload=payload, ts=datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        """JSON-serializable shape used by the WebSocket hub and redis publisher."""

        return {
            "type": self.type.value,
            "identifier": self.identifier,
            "ts": self.ts.isoformat(),
            **self.payload,
        }
