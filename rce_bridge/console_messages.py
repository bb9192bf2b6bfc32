from __future__ import annotations

import logging
from typing import Any

from rce_bridge.api.models import CommandResponse
from rce_bridge.command_queue import CommandCorrelator
from rce_bridge.core.events import DomainEvent, EventType
from rce_bridge.core.patterns import COMMAND_EXECUTING, LOG_LINE, SAVE_PREFIX, decode_line
from rce_bridge.event_bus import EventBus
from rce_bridge.session_store import SessionRegistry

logger = logging.getLogger(__name__)

INIT_LOGS_FLAG = "INIT_LOGS"


class ConsoleMessageRouter:
    """Turns raw console batches from the push channel into domain events.

    The first non-empty batch of a session is its log backlog: it only marks
    the session with `INIT_LOGS` and is otherwise discarded. Later batches are
    scanned line by line for command output (see `CommandCorrelator`) and for
    domain events.
    """

    def __init__(self, *, registry: SessionRegistry, correlator: CommandCorrelator, events: EventBus) -> None:
        self._registry = registry
        self._correlator = correlator
        self._events = events

    def handle(self, identifier: str, message: str | None) -> list[DomainEvent]:
        lines = [line.rstrip("\r") for line in (message or "").split("\n")]
        lines = [line for line in lines if line]
        if not lines:
            return []

        session = self._registry.get(identifier)
        if session is None:
            logger.debug("[%s] Console batch for unknown session dropped", identifier)
            return []

        if INIT_LOGS_FLAG not in session.flags:
            logger.debug("[%s] Initial Logs Received: %d", identifier, len(lines))
            session.flags.append(INIT_LOGS_FLAG)
            self._registry.update(session)
            return []

        emitted: list[DomainEvent] = []
        # Command whose "executing" marker was seen earlier in this batch.
        current_command: str | None = None

        for line in lines:
            match = LOG_LINE.match(line)
            if not match:
                continue
            timestamp, content = match.group(1), match.group(2).strip()
            if not content:
                continue

            try:
                current_command = self._handle_line(
                    identifier=identifier,
                    timestamp=timestamp,
                    log=content,
                    current_command=current_command,
                    emitted=emitted,
                )
            except Exception:
                logger.debug("[%s] Skipping undecodable line: %r", identifier, content, exc_info=True)

        return emitted

    def _handle_line(
        self,
        *,
        identifier: str,
        timestamp: str,
        log: str,
        current_command: str | None,
        emitted: list[DomainEvent],
    ) -> str | None:
        emitted.append(self._emit(identifier, EventType.message, {"message": log}))

        executing = COMMAND_EXECUTING.search(log)
        if executing:
            command = executing.group(1)
            logger.debug("[%s] Executing Match: %s", identifier, command)
            emitted.append(self._emit(identifier, EventType.executing_command, {"command": command}))

            record = self._correlator.get(identifier, command)
            if record is not None and record.timestamp is None:
                # First marker wins; the marker line itself is not output.
                record.timestamp = timestamp
                logger.debug("[%s] Command Timestamp Added: %s", identifier, command)
                return command

        queued = self._correlator.get_queued(identifier, timestamp)
        if queued is not None and not log.startswith(SAVE_PREFIX):
            logger.debug("[%s] Command Response Found: %s", identifier, queued.command)
            self._correlator.settle(queued, CommandResponse.success(log))
        elif current_command is not None:
            # Servers that stamp output with a later timestamp: take the next line.
            record = self._correlator.get(identifier, current_command)
            if record is not None:
                logger.debug("[%s] Command Response Not Found, Using Next Line: %s", identifier, current_command)
                self._correlator.settle(record, CommandResponse.success(log))
                current_command = None

        for line_event in decode_line(log):
            emitted.append(self._emit(identifier, line_event.type, line_event.payload))

        return current_command

    def _emit(self, identifier: str, type: EventType, payload: dict[str, Any]) -> DomainEvent:
        event = DomainEvent.now(type=type, identifier=identifier, payload=payload)
        self._events.emit(event)
        return event
