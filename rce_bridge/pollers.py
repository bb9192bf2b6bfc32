from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rce_bridge.config import Settings
from rce_bridge.core.events import EventType
from rce_bridge.core.helpers import compare_population
from rce_bridge.core.patterns import BROADCASTER, OIL_RIG_FREQUENCIES, QUOTED_NAME

if TYPE_CHECKING:
    from rce_bridge.manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Broadcast:
    frequency: int
    coordinates: tuple[float, float, float]
    range: int


@dataclass(frozen=True, slots=True)
class DebrisMarker:
    command: str
    entity: str
    flag: str
    event: str


DEBRIS_MARKERS: tuple[DebrisMarker, ...] = (
    DebrisMarker("find_entity servergibs_bradley", "servergibs_bradley", "BRADLEY", "Bradley APC Debris"),
    DebrisMarker(
        "find_entity servergibs_patrolhelicopter",
        "servergibs_patrolhelicopter",
        "HELICOPTER",
        "Patrol Helicopter Debris",
    ),
)


def parse_player_list(response: str) -> list[str] | None:
    """Names from a `Users` reply; the first quoted token is the column header."""

    names = QUOTED_NAME.findall(response)
    if not names:
        return None
    return names[1:]


def parse_broadcasts(response: str) -> list[Broadcast]:
    return [
        Broadcast(
            frequency=int(m.group(1)),
            coordinates=(float(m.group(2)), float(m.group(3)), float(m.group(4))),
            range=int(m.group(5)),
        )
        for m in BROADCASTER.finditer(response)
    ]


async def update_players(*, manager: SessionManager, identifier: str) -> None:
    session = manager.registry.get(identifier)
    if session is None:
        logger.warning("[%s] Failed To Update Players: Invalid Server", identifier)
        return

    logger.debug("[%s] Updating Players", identifier)

    result = await manager.command(identifier, "Users", response=True)
    players = parse_player_list(result.response) if result.response else None
    if players is None:
        if not session.silent:
            logger.warning("[%s] Failed To Update Players", identifier)
        return

    # Re-fetch: other tasks may have written while the command was in flight.
    session = manager.registry.get(identifier)
    if session is None:
        return

    delta = compare_population(session.players, players)
    for ign in delta.joined:
        manager.emit(identifier, EventType.player_joined, {"ign": ign})
    for ign in delta.left:
        manager.emit(identifier, EventType.player_left, {"ign": ign})

    session.players = players
    manager.registry.update(session)

    manager.emit(
        identifier,
        EventType.player_list_updated,
        {"players": players, "joined": delta.joined, "left": delta.left},
    )
    logger.debug("[%s] Players Updated", identifier)


async def update_broadcasters(*, manager: SessionManager, identifier: str) -> None:
    session = manager.registry.get(identifier)
    if session is None:
        logger.warning("[%s] Failed To Update Broadcasters: Invalid Server", identifier)
        return

    logger.debug("[%s] Updating Broadcasters", identifier)

    result = await manager.command(identifier, "rf.listboardcaster", response=True)
    if not result.response:
        if not session.silent:
            logger.warning("[%s] Failed To Update Broadcasters", identifier)
        return

    broadcasts = parse_broadcasts(result.response)

    session = manager.registry.get(identifier)
    if session is None:
        return

    live = {b.frequency for b in broadcasts}
    for frequency in list(session.frequencies):
        if frequency not in live:
            manager.emit(identifier, EventType.frequency_lost, {"frequency": frequency})
            session.frequencies.remove(frequency)

    for broadcast in broadcasts:
        if broadcast.frequency in session.frequencies:
            continue
        session.frequencies.append(broadcast.frequency)

        rig = OIL_RIG_FREQUENCIES.get(broadcast.frequency)
        if rig is not None:
            manager.emit(identifier, EventType.event_start, {"event": rig, "special": False})

        manager.emit(
            identifier,
            EventType.frequency_gained,
            {
                "frequency": broadcast.frequency,
                "coordinates": list(broadcast.coordinates),
                "range": broadcast.range,
            },
        )

    manager.registry.update(session)
    logger.debug("[%s] Broadcasters Updated", identifier)


async def fetch_gibs(*, manager: SessionManager, identifier: str) -> None:
    session = manager.registry.get(identifier)
    if session is None:
        logger.warning("[%s] Failed To Fetch Gibs: Invalid Server", identifier)
        return

    logger.debug("[%s] Fetching Gibs", identifier)

    responses: list[str] = []
    for marker in DEBRIS_MARKERS:
        result = await manager.command(identifier, marker.command, response=True)
        responses.append(result.response or "")

    if not all(responses):
        if not session.silent:
            logger.warning("[%s] Failed To Fetch Gibs", identifier)
        return

    session = manager.registry.get(identifier)
    if session is None:
        return

    for marker, response in zip(DEBRIS_MARKERS, responses):
        if marker.entity not in response or marker.flag in session.flags:
            continue
        session.flags.append(marker.flag)
        # Plain timer: the flag drops after the TTL whatever later polls see.
        manager.schedule_flag_expiry(identifier, marker.flag, manager.settings.debris_flag_ttl_s)
        manager.emit(identifier, EventType.event_start, {"event": marker.event, "special": False})

    manager.registry.update(session)
    logger.debug("[%s] Gibs Fetched", identifier)


PollFn = Callable[..., Awaitable[None]]


@dataclass(frozen=True, slots=True)
class PollerSpec:
    # Matches the field name on PollerToggles / SessionOptions.
    name: str
    interval: Callable[[Settings], float]
    poll: PollFn


POLLERS: tuple[PollerSpec, ...] = (
    PollerSpec("player_refreshing", lambda s: s.player_interval_s, update_players),
    PollerSpec("radio_refreshing", lambda s: s.radio_interval_s, update_broadcasters),
    PollerSpec("extended_event_refreshing", lambda s: s.gibs_interval_s, fetch_gibs),
)
