from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from rce_bridge.core.events import EventType, KillType

# `<timestamp>:LOG:<CHANNEL>: <content>` as pushed by the console socket.
LOG_LINE = re.compile(
    r"^(\d{4}[-.]\d{2}[-.]\d{2}[T\- ]\d{2}:\d{2}:\d{2}(?:[.:]\d+)?Z?):LOG:[A-Z_]+: (.*)$"
)

COMMAND_EXECUTING = re.compile(r"Executing console system command '(.+)'")
SAVE_PREFIX = "[ SAVE ]"

BROADCASTER = re.compile(r"\[(\d+) MHz\] Position: \(([\d.-]+), ([\d.-]+), ([\d.-]+)\), Range: (\d+)")
QUOTED_NAME = re.compile(r'"(.*?)"')

VENDING_MACHINE_NAME = re.compile(
    r"\[VENDING MACHINE\] Player \[ (.+?) \] changed name from \[ (.+?) \] to \[ (.+?) \]"
)
QUICK_CHAT = re.compile(r"(\[CHAT (TEAM|SERVER|LOCAL)\]) (.+?) : (.+)")
CUSTOM_ZONE_CREATED = re.compile(r"Successfully created zone \[(.+?)\]")
CUSTOM_ZONE_REMOVED = re.compile(r"Successfully removed zone \[(.+?)\]")
PLAYER_ROLE_ADD = re.compile(r"\[(.+?)\] Added \[(.+?)\] (?:\(.+?\) )?to Group \[(.+?)\]")
PLAYER_ROLE_REMOVE = re.compile(r"\[(.+?)\] Removed \[(.+?)\] (?:\(.+?\) )?from Group \[(.+?)\]")
ITEM_SPAWN = re.compile(r"\[ServerVar\] giving (.+?) (\d+) x (.+)")
NOTE_EDIT = re.compile(r"\[NOTE PANEL\] Player \[ (.+?) \] changed name from \[(.*?)\] to \[(.*?)\]")
TEAM_CREATE = re.compile(r"\[(.+?)\] created a new team, ID: \[(\d+)\]")
TEAM_JOIN = re.compile(r"\[(.+?)\] has joined \[(.+?)s\] team, ID: \[(\d+)\]")
TEAM_INVITE = re.compile(r"\[(.+?)\] has invited \[(.+?)\] to their team, ID: \[(\d+)\]")
TEAM_LEAVE = re.compile(r"\[(.+?)\] has left \[(.+?)s\] team, ID: \[(\d+)\]")
TEAM_INVITE_CANCEL = re.compile(r"\[(.+?)\] was uninvited from \[(.+?)s\] team, ID: \[(\d+)\]")
TEAM_PROMOTED = re.compile(r"\[(.+?)\] has promoted \[(.+?)\] to the leader of team, ID: \[(\d+)\]")
KIT_SPAWN = re.compile(r"SERVER giving (.+?) kit (\w+)")
KIT_GIVE = re.compile(r"\[ServerVar\] (.+?) giving (.+?) kit (\w+)")
SPECIAL_EVENT_SET = re.compile(r"Setting event as :(\w+)")

EVENT_PREFIX = "[event]"
KILL_SEPARATOR = " was killed by "
SUICIDE_MARKER = " was suicide by Suicide"
RESPAWN_MARKER = "has entered the game"

_QUICK_CHAT_CHANNELS = {
    "[CHAT TEAM]": "team",
    "[CHAT SERVER]": "server",
    "[CHAT LOCAL]": "local",
}


@dataclass(frozen=True, slots=True)
class TimedEvent:
    name: str
    special: bool = False


# Ordered; a line may contain more than one key and then fires once per key.
TIMED_EVENTS: dict[str, TimedEvent] = {
    "event_airdrop": TimedEvent("Airdrop"),
    "event_cargoship": TimedEvent("Cargo Ship"),
    "event_cargoheli": TimedEvent("Chinook"),
    "event_helicopter": TimedEvent("Patrol Helicopter"),
    "event_halloween": TimedEvent("Halloween", special=True),
    "event_xmas": TimedEvent("Christmas", special=True),
    "event_easter": TimedEvent("Easter", special=True),
}

# Radio frequencies that only exist while an oil rig is active.
OIL_RIG_FREQUENCIES: dict[int, str] = {
    4765: "Small Oil Rig",
    4768: "Oil Rig",
}


@dataclass(frozen=True, slots=True)
class KillSource:
    name: str
    type: KillType


# Keyed by the lower-cased identifier the server prints for the killer/victim.
KILL_SOURCES: dict[str, KillSource] = {
    "scientistnpcnew": KillSource("Scientist", KillType.npc),
    "scarecrow": KillSource("Scarecrow", KillType.npc),
    "tunneldweller": KillSource("Tunnel Dweller", KillType.npc),
    "underwaterdweller": KillSource("Underwater Dweller", KillType.npc),
    "bradleyapc": KillSource("Bradley APC", KillType.npc),
    "patrolhelicopter": KillSource("Patrol Helicopter", KillType.npc),
    "autoturret_deployed": KillSource("Auto Turret", KillType.other),
    "flameturret.deployed": KillSource("Flame Turret", KillType.other),
    "guntrap.deployed": KillSource("Shotgun Trap", KillType.other),
    "sam_site_turret_deployed": KillSource("SAM Site", KillType.other),
    "landmine": KillSource("Landmine", KillType.other),
    "beartrap": KillSource("Bear Trap", KillType.other),
    "bear": KillSource("Bear", KillType.other),
    "polarbear": KillSource("Polar Bear", KillType.other),
    "wolf": KillSource("Wolf", KillType.other),
    "boar": KillSource("Boar", KillType.other),
    "stag": KillSource("Stag", KillType.other),
    "chicken": KillSource("Chicken", KillType.other),
    "simpleshark": KillSource("Shark", KillType.other),
    "thirst": KillSource("Thirst", KillType.other),
    "hunger": KillSource("Hunger", KillType.other),
    "cold": KillSource("Cold", KillType.other),
    "drowned": KillSource("Drowning", KillType.other),
    "fall": KillSource("Fall", KillType.other),
    "bleeding": KillSource("Bleeding", KillType.other),
    "radiation": KillSource("Radiation", KillType.other),
}

_NUMERIC = re.compile(r"[0-9]+")


@dataclass(frozen=True, slots=True)
class LineEvent:
    type: EventType
    payload: dict[str, Any]


LineDecoder = Callable[[str], Iterator[LineEvent]]


def resolve_kill_party(ign: str) -> dict[str, str]:
    """Classify one side of a kill line as a player, an NPC or something else."""

    source = KILL_SOURCES.get(ign.lower())
    if source is not None:
        return {"id": ign, "name": source.name, "type": source.type.value}

    # Roaming scientists are printed by their numeric entity id; 0 is not an entity.
    if _NUMERIC.fullmatch(ign) and int(ign) != 0:
        return {"id": ign, "name": "Scientist", "type": KillType.npc.value}

    return {"id": ign, "name": ign, "type": KillType.player.value}


def _admin_or_none(name: str) -> str | None:
    return None if name == "SERVER" else name


def _vending_machine_name(log: str) -> Iterator[LineEvent]:
    m = VENDING_MACHINE_NAME.search(log)
    if m:
        yield LineEvent(
            EventType.vending_machine_name,
            {"ign": m.group(1), "old_name": m.group(2), "new_name": m.group(3)},
        )


def _quick_chat(log: str) -> Iterator[LineEvent]:
    m = QUICK_CHAT.search(log)
    if m:
        yield LineEvent(
            EventType.quick_chat,
            {"channel": _QUICK_CHAT_CHANNELS[m.group(1)], "ign": m.group(3), "message": m.group(4)},
        )


def _player_suicide(log: str) -> Iterator[LineEvent]:
    if SUICIDE_MARKER in log:
        yield LineEvent(EventType.player_suicide, {"ign": log.split(SUICIDE_MARKER)[0]})


def _player_respawned(log: str) -> Iterator[LineEvent]:
    if RESPAWN_MARKER in log:
        platform = "XBL" if "[xboxone]" in log else "PS"
        yield LineEvent(EventType.player_respawned, {"ign": log.split(" [")[0], "platform": platform})


def _custom_zones(log: str) -> Iterator[LineEvent]:
    m = CUSTOM_ZONE_CREATED.search(log)
    if m:
        yield LineEvent(EventType.custom_zone_created, {"zone": m.group(1)})
    m = CUSTOM_ZONE_REMOVED.search(log)
    if m:
        yield LineEvent(EventType.custom_zone_removed, {"zone": m.group(1)})


def _player_roles(log: str) -> Iterator[LineEvent]:
    if "Added" in log:
        m = PLAYER_ROLE_ADD.search(log)
        if m:
            yield LineEvent(
                EventType.player_role_add,
                {"admin": _admin_or_none(m.group(1)), "ign": m.group(2), "role": m.group(3)},
            )
    if "Removed" in log:
        m = PLAYER_ROLE_REMOVE.search(log)
        if m:
            yield LineEvent(
                EventType.player_role_remove,
                {"admin": _admin_or_none(m.group(1)), "ign": m.group(2), "role": m.group(3)},
            )


def _item_spawn(log: str) -> Iterator[LineEvent]:
    m = ITEM_SPAWN.search(log)
    if m:
        yield LineEvent(EventType.item_spawn, {"ign": m.group(1), "quantity": int(m.group(2)), "item": m.group(3)})


def _note_edit(log: str) -> Iterator[LineEvent]:
    m = NOTE_EDIT.search(log)
    if not m:
        return
    # Notes arrive with escaped newlines; only the first line is meaningful.
    old_content = m.group(2).strip().split("\\n")[0]
    new_content = m.group(3).strip().split("\\n")[0]
    if new_content and old_content != new_content:
        yield LineEvent(
            EventType.note_edit,
            {"ign": m.group(1), "old_content": old_content, "new_content": new_content},
        )


def _teams(log: str) -> Iterator[LineEvent]:
    m = TEAM_CREATE.search(log)
    if m:
        yield LineEvent(EventType.team_create, {"id": int(m.group(2)), "owner": m.group(1)})
    m = TEAM_JOIN.search(log)
    if m:
        yield LineEvent(EventType.team_join, {"id": int(m.group(3)), "owner": m.group(2), "ign": m.group(1)})
    m = TEAM_INVITE.search(log)
    if m:
        yield LineEvent(EventType.team_invite, {"id": int(m.group(3)), "owner": m.group(1), "ign": m.group(2)})
    m = TEAM_LEAVE.search(log)
    if m:
        yield LineEvent(EventType.team_leave, {"id": int(m.group(3)), "owner": m.group(2), "ign": m.group(1)})
    m = TEAM_INVITE_CANCEL.search(log)
    if m:
        yield LineEvent(
            EventType.team_invite_cancel,
            {"id": int(m.group(3)), "owner": m.group(2), "ign": m.group(1)},
        )
    m = TEAM_PROMOTED.search(log)
    if m:
        yield LineEvent(
            EventType.team_promoted,
            {"id": int(m.group(3)), "old_owner": m.group(1), "new_owner": m.group(2)},
        )


def _kits(log: str) -> Iterator[LineEvent]:
    m = KIT_SPAWN.search(log)
    if m:
        yield LineEvent(EventType.kit_spawn, {"ign": m.group(1), "kit": m.group(2)})
    m = KIT_GIVE.search(log)
    if m:
        yield LineEvent(EventType.kit_give, {"admin": m.group(1), "ign": m.group(2), "kit": m.group(3)})


def _special_event_set(log: str) -> Iterator[LineEvent]:
    m = SPECIAL_EVENT_SET.search(log)
    if m:
        yield LineEvent(EventType.special_event_set, {"event": m.group(1)})


def _event_start(log: str) -> Iterator[LineEvent]:
    if not log.startswith(EVENT_PREFIX):
        return
    # No early exit: every contained key fires.
    for key, event in TIMED_EVENTS.items():
        if key in log:
            yield LineEvent(EventType.event_start, {"event": event.name, "special": event.special})


def _player_kill(log: str) -> Iterator[LineEvent]:
    if KILL_SEPARATOR not in log:
        return
    victim, killer = (part.strip() for part in log.split(KILL_SEPARATOR)[:2])
    yield LineEvent(
        EventType.player_kill,
        {"victim": resolve_kill_party(victim), "killer": resolve_kill_party(killer)},
    )


# Evaluation order of the domain matchers. Matches are independent of each other.
LINE_DECODERS: tuple[LineDecoder, ...] = (
    _vending_machine_name,
    _quick_chat,
    _player_suicide,
    _player_respawned,
    _custom_zones,
    _player_roles,
    _item_spawn,
    _note_edit,
    _teams,
    _kits,
    _special_event_set,
    _event_start,
    _player_kill,
)


def decode_line(log: str) -> list[LineEvent]:
    """Run one log line's content through every domain matcher."""

    events: list[LineEvent] = []
    for decoder in LINE_DECODERS:
        events.extend(decoder(log))
    return events
