from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import Any

from rce_bridge.api.models import (
    CommandResponse,
    FetchedServer,
    PollerToggles,
    Region,
    ServerStatus,
    Session,
    SessionOptions,
)
from rce_bridge.command_queue import CommandCorrelator, PendingCommand
from rce_bridge.config import Settings
from rce_bridge.console_messages import ConsoleMessageRouter
from rce_bridge.core.events import DomainEvent, EventType
from rce_bridge.core.helpers import clean_output, strip_color_tags
from rce_bridge.event_bus import EventBus
from rce_bridge.fsm import LifecycleChange, apply_status
from rce_bridge.infra.auth import AccessTokenSource
from rce_bridge.infra.portal_client import PortalClient, PortalRequestError
from rce_bridge.pollers import POLLERS, PollerSpec
from rce_bridge.session_store import SessionRegistry

logger = logging.getLogger(__name__)

PUBLIC_ID_LENGTH = 7


class SessionManager:
    """Owns every managed server session and the work scheduled for it.

    Contract:
      - `command(..., response=True)` always resolves, never raises for
        portal failures: output, `response=None` after the timeout, or a
        failed `CommandResponse`.
      - removing a session cancels its pollers and flag timers and closes
        its WebSocket clients; in-flight commands still settle through
        their own timeout.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        portal: PortalClient,
        tokens: AccessTokenSource,
        events: EventBus | None = None,
        registry: SessionRegistry | None = None,
        correlator: CommandCorrelator | None = None,
    ) -> None:
        self.settings = settings
        self.portal = portal
        self.tokens = tokens
        self.events = events or EventBus()
        self.registry = registry or SessionRegistry()
        self.correlator = correlator or CommandCorrelator()
        self.router = ConsoleMessageRouter(registry=self.registry, correlator=self.correlator, events=self.events)
        self._background: set[asyncio.Task[Any]] = set()

    # -- sessions ---------------------------------------------------------

    async def add(self, options: SessionOptions) -> bool:
        identifier = options.identifier
        logger.debug("[%s] Adding Server", identifier)

        if identifier in self.registry:
            logger.error("[%s] Failed To Add Server: Server Already Exists", identifier)
            return False

        token = self.tokens.access_token
        if not token:
            logger.error("[%s] Failed To Add Server: No Access Token", identifier)
            return False

        server_id = options.server_id if isinstance(options.server_id, list) else [options.server_id]
        if not server_id:
            logger.error("[%s] Failed To Add Server: Invalid SID", identifier)
            return False

        if len(server_id) < 2 or not server_id[1]:
            public_id = server_id[0]
            if len(str(public_id)) != PUBLIC_ID_LENGTH:
                logger.error("[%s] Failed To Add Server: Invalid SID (Incorrect Length)", identifier)
                return False
            try:
                internal_id = await self.portal.resolve_sid(token=token, gameserver_id=public_id, region=options.region)
            except PortalRequestError as e:
                logger.error("[%s] Failed To Add Server: %s", identifier, e)
                return False
            server_id = [public_id, internal_id]

        try:
            raw_status = await self.portal.fetch_status(token=token, sid=server_id[1], region=options.region)
        except PortalRequestError as e:
            logger.error("[%s] Failed To Fetch Server Status: %s", identifier, e)
            raw_status = None

        if not raw_status:
            logger.error("[%s] Failed To Add Server: No Status Information", identifier)
            return False

        try:
            status = ServerStatus(raw_status)
        except ValueError:
            logger.warning("[%s] Unknown Server Status %r, Treating As Stopped", identifier, raw_status)
            status = ServerStatus.stopped

        if status == ServerStatus.suspended:
            logger.error("[%s] Failed To Add Server: Suspended", identifier)
            return False

        # Another add for the same identifier may have finished while we awaited the portal.
        if identifier in self.registry:
            logger.error("[%s] Failed To Add Server: Server Already Exists", identifier)
            return False

        session = Session(
            identifier=identifier,
            server_id=server_id,
            region=options.region,
            status=status,
            refreshing=PollerToggles(
                player_refreshing=options.player_refreshing,
                radio_refreshing=options.radio_refreshing,
                extended_event_refreshing=options.extended_event_refreshing,
            ),
            state=list(options.state),
            silent=options.silent,
        )
        self.registry.add(session)
        self._start_pollers(session)

        logger.info("[%s] Server Added (%s)", identifier, status.value)
        if session.is_running:
            await self._run_enabled_polls(identifier)
        return True

    async def add_many(self, options: Iterable[SessionOptions]) -> dict[str, bool]:
        options = list(options)
        results = await asyncio.gather(*(self.add(opts) for opts in options))
        return {opts.identifier: ok for opts, ok in zip(options, results)}

    def remove(self, identifier: str) -> bool:
        session = self.registry.remove(identifier)
        if session is None:
            logger.warning("[%s] Failed To Remove Server: Invalid Server", identifier)
            return False
        self.events.detach(identifier)
        logger.info("[%s] Server Removed", identifier)
        return True

    def remove_many(self, identifiers: Iterable[str]) -> dict[str, bool]:
        return {identifier: self.remove(identifier) for identifier in identifiers}

    def remove_all(self) -> int:
        return sum(1 for ok in self.remove_many(self.registry.identifiers()).values() if ok)

    def get(self, identifier: str) -> Session | None:
        return self.registry.get(identifier)

    def list_sessions(self) -> list[Session]:
        return self.registry.list_sessions()

    # -- commands ---------------------------------------------------------

    async def command(self, identifier: str, command: str, response: bool = False) -> CommandResponse:
        """Send one console command, optionally waiting for its output.

        With `response=True`, an identical command issued while the first is
        still waiting for output is not sent again: both callers get the first
        one's result, so e.g. repeated `say` lines collapse into a single send.
        """

        token = self.tokens.access_token
        if not token:
            logger.warning("[%s] Failed To Send Command: No Access Token", identifier)
            return CommandResponse.failure("No Access Token")

        session = self.registry.get(identifier)
        if session is None:
            logger.warning("[%s] Failed To Send Command: Invalid Server", identifier)
            return CommandResponse.failure("Invalid Server")

        if not session.is_running:
            if not session.silent:
                logger.warning("[%s] Failed To Send Command: Server Not Running", identifier)
            return CommandResponse.failure("Server Not Running")

        logger.debug("[%s] Sending Command: %s", identifier, command)

        if response:
            return await self._command_with_response(session=session, token=token, command=command)

        try:
            await self.portal.send_console_message(
                token=token,
                sid=session.internal_id,
                region=session.region,
                message=command,
                require_ok=False,
            )
        except PortalRequestError as e:
            logger.error("[%s] Failed To Send Command: %s", identifier, e)
            return CommandResponse.failure(str(e))

        logger.debug("[%s] Command Sent: %s", identifier, command)
        return CommandResponse.success()

    async def _command_with_response(self, *, session: Session, token: str, command: str) -> CommandResponse:
        loop = asyncio.get_running_loop()
        identifier = session.identifier

        # Register before sending: the console can echo the command before the send call returns.
        record = PendingCommand(identifier=identifier, command=command, future=loop.create_future())
        if not self.correlator.add(record):
            existing = self.correlator.get(identifier, command)
            if existing is not None:
                logger.debug("[%s] Command Already In Flight, Sharing Result: %s", identifier, command)
                return await asyncio.shield(existing.future)

        try:
            await self.portal.send_console_message(
                token=token,
                sid=session.internal_id,
                region=session.region,
                message=command,
            )
        except PortalRequestError as e:
            logger.error("[%s] Failed To Send Command: %s", identifier, e)
            self.correlator.settle(record, CommandResponse.failure(str(e)))
            return await asyncio.shield(record.future)
        except asyncio.CancelledError:
            self.correlator.settle(record, CommandResponse.failure("Cancelled"))
            raise

        logger.debug("[%s] Command Sent: %s", identifier, command)
        if self.correlator.get(identifier, command) is record:
            record.timeout = loop.call_later(self.settings.command_timeout_s, self._expire_command, record)

        return await asyncio.shield(record.future)

    def _expire_command(self, record: PendingCommand) -> None:
        record.timeout = None
        if self.correlator.get(record.identifier, record.command) is not record:
            return
        logger.debug("[%s] No Output Within Timeout: %s", record.identifier, record.command)
        self.correlator.settle(record, CommandResponse.success())

    async def info(self, identifier: str, *, raw_hostname: bool = False) -> Any | None:
        if identifier not in self.registry:
            logger.error("[%s] Failed To Fetch Server Info: Invalid Server", identifier)
            return None

        result = await self.command(identifier, "serverinfo", response=True)
        if not result.response:
            logger.error("[%s] Failed To Fetch Server Info", identifier)
            return None
        return clean_output(result.response, raw_hostname=raw_hostname)

    async def fetch_advanced(self, identifier: str) -> dict[str, Any] | None:
        token = self.tokens.access_token
        if not token:
            logger.error("[%s] Failed To Fetch Advanced Information: No Access Token", identifier)
            return None
        session = self.registry.get(identifier)
        if session is None:
            logger.error("[%s] Failed To Fetch Advanced Information: Invalid Server", identifier)
            return None

        logger.debug("[%s] Fetching Advanced Information", identifier)
        try:
            return await self.portal.fetch_advanced(token=token, sid=session.internal_id, region=session.region)
        except PortalRequestError as e:
            logger.error("[%s] Failed To Fetch Advanced Information: %s", identifier, e)
            return None

    async def fetch_servers(self, region: Region | None = None) -> list[FetchedServer]:
        """List the account's Rust console servers; both regions when `region` is None."""

        token = self.tokens.access_token
        if not token:
            logger.warning("Failed To Fetch Servers: No Access Token")
            return []

        if region is None:
            return await self.fetch_servers("EU") + await self.fetch_servers("US")

        logger.debug("Fetching Servers (%s)", region)
        try:
            raw = await self.portal.fetch_servers(token=token, region=region)
        except PortalRequestError as e:
            logger.warning("Failed To Fetch Servers (%s): %s", region, e)
            return []
        return [FetchedServer(name=strip_color_tags(s["raw_name"]), **s) for s in raw]

    # -- service control --------------------------------------------------

    async def stop(self, identifier: str, *, force: bool = False) -> bool:
        token = self.tokens.access_token
        session = self.registry.get(identifier)
        if not token or session is None:
            logger.error("[%s] Failed To Stop Server: %s", identifier, "No Access Token" if not token else "Invalid Server")
            return False
        try:
            await self.portal.stop_service(token=token, sid=session.internal_id, region=session.region, force=force)
        except PortalRequestError as e:
            logger.error("[%s] Failed To Stop Server: %s", identifier, e)
            return False
        logger.info("[%s] Server Stopping", identifier)
        return True

    async def start(self, identifier: str) -> bool:
        token = self.tokens.access_token
        session = self.registry.get(identifier)
        if not token or session is None:
            logger.error("[%s] Failed To Start Server: %s", identifier, "No Access Token" if not token else "Invalid Server")
            return False
        try:
            await self.portal.restart_service(token=token, sid=session.internal_id, region=session.region)
        except PortalRequestError as e:
            logger.error("[%s] Failed To Start Server: %s", identifier, e)
            return False
        logger.info("[%s] Server Starting", identifier)
        return True

    # -- push channel -----------------------------------------------------

    def handle_console(self, identifier: str, message: str | None) -> list[DomainEvent]:
        return self.router.handle(identifier, message)

    def handle_status(self, identifier: str, status: ServerStatus) -> LifecycleChange | None:
        session = self.registry.get(identifier)
        if session is None:
            logger.debug("[%s] Status change for unknown session dropped", identifier)
            return None

        previous = session.status
        change = apply_status(session=session, status=status)
        self.registry.update(session)

        if previous != status:
            logger.info("[%s] Server Status: %s -> %s", identifier, previous.value, status.value)
            self.emit(identifier, EventType.service_status, {"status": status.value, "previous": previous.value})

        if change.entered_running:
            self._spawn(self._run_enabled_polls(identifier), name=f"resume-polls-{identifier}")
        return change

    # -- events and timers ------------------------------------------------

    def emit(self, identifier: str, type: EventType, payload: dict[str, Any]) -> DomainEvent:
        event = DomainEvent.now(type=type, identifier=identifier, payload=payload)
        self.events.emit(event)
        return event

    def schedule_flag_expiry(self, identifier: str, flag: str, delay_s: float) -> None:
        timers = self.registry.timers(identifier)
        if timers is None:
            return
        existing = timers.flag_expiries.pop(flag, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        timers.flag_expiries[flag] = loop.call_later(delay_s, self._expire_flag, identifier, flag)

    def _expire_flag(self, identifier: str, flag: str) -> None:
        timers = self.registry.timers(identifier)
        if timers is not None:
            timers.flag_expiries.pop(flag, None)

        session = self.registry.get(identifier)
        if session is None or flag not in session.flags:
            return
        session.flags = [f for f in session.flags if f != flag]
        self.registry.update(session)
        logger.debug("[%s] Flag Expired: %s", identifier, flag)

    def _enabled_pollers(self, session: Session) -> list[PollerSpec]:
        return [spec for spec in POLLERS if getattr(session.refreshing, spec.name)]

    def _start_pollers(self, session: Session) -> None:
        timers = self.registry.timers(session.identifier)
        if timers is None:
            return
        for spec in self._enabled_pollers(session):
            timers.pollers[spec.name] = asyncio.create_task(
                self._tick(identifier=session.identifier, spec=spec),
                name=f"{spec.name}-{session.identifier}",
            )

    async def _tick(self, *, identifier: str, spec: PollerSpec) -> None:
        interval_s = spec.interval(self.settings)
        while True:
            await asyncio.sleep(interval_s)
            session = self.registry.get(identifier)
            if session is None:
                return
            if not session.is_running:
                continue
            # Each poll runs on its own so a slow one never delays the next tick.
            self._spawn(spec.poll(manager=self, identifier=identifier), name=f"{spec.name}-poll-{identifier}")

    async def _run_enabled_polls(self, identifier: str) -> None:
        session = self.registry.get(identifier)
        if session is None:
            return
        for spec in self._enabled_pollers(session):
            await spec.poll(manager=self, identifier=identifier)

    def _spawn(self, coro: Awaitable[Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    async def aclose(self) -> None:
        self.remove_all()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.events.drain()
        await self.portal.aclose()
