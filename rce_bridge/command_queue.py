from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from rce_bridge.api.models import CommandResponse


@dataclass(slots=True, eq=False)
class PendingCommand:
    """A dispatched command still waiting for console output.

    `timestamp` is stamped from the first "executing" log line seen for this
    command; any later line with the same timestamp is taken as its output.
    """

    identifier: str
    command: str
    future: asyncio.Future[CommandResponse]
    timestamp: str | None = None
    timeout: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.identifier, self.command)

    def resolve(self, response: CommandResponse) -> None:
        if not self.future.done():
            self.future.set_result(response)

    def reject(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


class CommandCorrelator:
    """In-flight commands keyed by (session identifier, exact command text).

    Contract:
      - one record per key; `add` of a taken key is ignored
      - `get_queued` matches on the stamped log timestamp
      - `remove` is idempotent and only drops the record it was given

    No locking: every access happens inside a single event-loop step.
    """

    def __init__(self) -> None:
        self._pending: dict[tuple[str, str], PendingCommand] = {}

    def add(self, record: PendingCommand) -> bool:
        if record.key in self._pending:
            return False
        self._pending[record.key] = record
        return True

    def get(self, identifier: str, command: str) -> PendingCommand | None:
        return self._pending.get((identifier, command))

    def get_queued(self, identifier: str, timestamp: str) -> PendingCommand | None:
        for record in self._pending.values():
            if record.identifier == identifier and record.timestamp == timestamp:
                return record
        return None

    def remove(self, record: PendingCommand | None) -> None:
        if record is None:
            return
        if self._pending.get(record.key) is record:
            del self._pending[record.key]

    def settle(self, record: PendingCommand, response: CommandResponse) -> None:
        """Cancel the timeout, drop the record, then resolve its waiters."""

        if record.timeout is not None:
            record.timeout.cancel()
            record.timeout = None
        self.remove(record)
        record.resolve(response)

    def __len__(self) -> int:
        return len(self._pending)
