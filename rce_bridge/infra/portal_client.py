from __future__ import annotations

import logging
from typing import Any

import httpx

from rce_bridge.infra.http_retry import request_with_retry

logger = logging.getLogger(__name__)


SEND_CONSOLE_MESSAGE = (
    "mutation sendConsoleMessage($sid: Int!, $region: REGION!, $message: String!) {\n"
    "  sendConsoleMessage(rsid: {id: $sid, region: $region}, message: $message) {\n"
    "    ok\n"
    "  }\n"
    "}"
)

SERVICE_STATE = (
    "query ctx($sid: Int!, $region: REGION!) {\n"
    "  cfgContext(rsid: {id: $sid, region: $region}) {\n"
    "    ns {\n"
    "      service {\n"
    "        currentState {\n"
    "          state\n"
    "        }\n"
    "      }\n"
    "    }\n"
    "  }\n"
    "}"
)

RESOLVE_SID = (
    "query sid($gameserverId: Int!, $region: REGION!) {\n"
    "  sid(gameserverId: $gameserverId, region: $region)\n"
    "}"
)

STOP_SERVICE = (
    "mutation stopService($sid: Int!, $region: REGION!, $force: Boolean!) {\n"
    "  stopService(rsid: {id: $sid, region: $region}, force: $force) {\n"
    "    ok\n"
    "  }\n"
    "}"
)

RESTART_SERVICE = (
    "mutation restartService($sid: Int!, $region: REGION!) {\n"
    "  restartService(rsid: {id: $sid, region: $region}) {\n"
    "    cfgContext {\n"
    "      ns {\n"
    "        service {\n"
    "          currentState {\n"
    "            state\n"
    "          }\n"
    "        }\n"
    "      }\n"
    "    }\n"
    "  }\n"
    "}"
)

ADVANCED_CONTEXT = (
    "query ctx($sid: Int!, $region: REGION!) {\n"
    "  cfgContext(rsid: {id: $sid, region: $region}) {\n"
    "    ns {\n"
    "      sys {\n"
    "        game {\n"
    "          name\n"
    "          key\n"
    "          platform\n"
    "        }\n"
    "        gameServer {\n"
    "          id\n"
    "          serverName\n"
    "          serverPort\n"
    "          serverIp\n"
    "        }\n"
    "      }\n"
    "      service {\n"
    "        config {\n"
    "          rsid {\n"
    "            id\n"
    "            region\n"
    "          }\n"
    "          type\n"
    "          state\n"
    "          ipAddress\n"
    "          rconPort\n"
    "          queryPort\n"
    "          currentVersion\n"
    "          targetVersion\n"
    "        }\n"
    "        maxSlots\n"
    "        currentState {\n"
    "          state\n"
    "          fsmState\n"
    "          fsmIsTransitioning\n"
    "          fsmLastStateChange\n"
    "        }\n"
    "        backups {\n"
    "          id\n"
    "          created\n"
    "          isAutoBackup\n"
    "        }\n"
    "        restartSchedule {\n"
    "          id\n"
    "          runOnWeekday\n"
    "          runAtTimeofday\n"
    "          runInTimezone\n"
    "          schedule\n"
    "        }\n"
    "      }\n"
    "      profile {\n"
    "        ... on RustConsoleProfileNamespace {\n"
    "          name\n"
    "          cfgFiles\n"
    "          logFiles\n"
    "          publicConfigs\n"
    "        }\n"
    "      }\n"
    "    }\n"
    "  }\n"
    "}"
)

# Account server list paths, relative to the portal origin.
REGION_PATHS = {"EU": "eur", "US": "int"}


class PortalRequestError(RuntimeError):
    """A portal call failed (network error, non-2xx, or a not-ok GraphQL reply)."""


class PortalClient:
    """Thin GraphQL client for the hosting portal.

    Every method raises `PortalRequestError` on failure; callers decide how to
    report it. Only console messages go through the gateway-error retry.
    The account server list is read from the site's REST pages, everything
    else goes through the GraphQL endpoint.
    """

    def __init__(
        self,
        *,
        api_url: str,
        portal_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        retries: int = 2,
        retry_delay_s: float = 1.0,
    ) -> None:
        self._api_url = api_url
        # Account pages live on the site root rather than under the GraphQL path.
        self._portal_url = httpx.URL(portal_url or api_url).join("/")
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._retries = retries
        self._retry_delay_s = retry_delay_s

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, *, token: str, operation: str, query: str, variables: dict[str, Any], retry: bool = False) -> httpx.Response:
        logger.debug("Portal request: %s", operation)
        body = {"operationName": operation, "variables": variables, "query": query}
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        try:
            if retry:
                response = await request_with_retry(
                    self._client,
                    "POST",
                    self._api_url,
                    json=body,
                    headers=headers,
                    retries=self._retries,
                    retry_delay_s=self._retry_delay_s,
                )
            else:
                response = await self._client.post(self._api_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise PortalRequestError(str(e) or type(e).__name__) from e

        if not response.is_success:
            raise PortalRequestError(f"HTTP {response.status_code} {response.reason_phrase}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise PortalRequestError("Invalid JSON response") from e
        if not isinstance(data, dict):
            raise PortalRequestError("Invalid JSON response")
        return data

    async def send_console_message(
        self,
        *,
        token: str,
        sid: int,
        region: str,
        message: str,
        require_ok: bool = True,
    ) -> None:
        """Send one console command.

        With `require_ok=False` an HTTP acknowledgement is enough; otherwise the
        mutation must also report `ok: true`.
        """

        response = await self._post(
            token=token,
            operation="sendConsoleMessage",
            query=SEND_CONSOLE_MESSAGE,
            variables={"sid": sid, "region": region, "message": message},
            retry=True,
        )
        if not require_ok:
            return

        data = self._json(response)
        if not ((data.get("data") or {}).get("sendConsoleMessage") or {}).get("ok"):
            raise PortalRequestError("AioRpcError")

    async def fetch_status(self, *, token: str, sid: int, region: str) -> str | None:
        response = await self._post(
            token=token,
            operation="ctx",
            query=SERVICE_STATE,
            variables={"sid": sid, "region": region},
        )
        data = self._json(response)
        state = (
            (((((data.get("data") or {}).get("cfgContext") or {}).get("ns") or {}).get("service") or {}).get("currentState") or {})
        ).get("state")
        return str(state) if state else None

    async def resolve_sid(self, *, token: str, gameserver_id: int, region: str) -> int:
        response = await self._post(
            token=token,
            operation="sid",
            query=RESOLVE_SID,
            variables={"gameserverId": gameserver_id, "region": region},
        )
        data = self._json(response)
        errors = data.get("errors") or []
        if errors:
            raise PortalRequestError(str(errors[0].get("message", "Unknown error")))

        sid = (data.get("data") or {}).get("sid")
        if not sid:
            raise PortalRequestError("Invalid SID")
        return int(sid)

    async def stop_service(self, *, token: str, sid: int, region: str, force: bool = False) -> None:
        response = await self._post(
            token=token,
            operation="stopService",
            query=STOP_SERVICE,
            variables={"sid": sid, "region": region, "force": force},
        )
        data = self._json(response)
        if not ((data.get("data") or {}).get("stopService") or {}).get("ok"):
            raise PortalRequestError("AioRpcError")

    async def restart_service(self, *, token: str, sid: int, region: str) -> None:
        response = await self._post(
            token=token,
            operation="restartService",
            query=RESTART_SERVICE,
            variables={"sid": sid, "region": region},
        )
        data = self._json(response)
        if not ((data.get("data") or {}).get("restartService") or {}).get("cfgContext"):
            raise PortalRequestError("AioRpcError")

    async def fetch_advanced(self, *, token: str, sid: int, region: str) -> dict[str, Any]:
        """Return the service's configuration namespace (ports, backups, restart schedule, ...)."""

        response = await self._post(
            token=token,
            operation="ctx",
            query=ADVANCED_CONTEXT,
            variables={"sid": sid, "region": region},
        )
        data = self._json(response)
        ns = ((data.get("data") or {}).get("cfgContext") or {}).get("ns")
        if not ns:
            raise PortalRequestError("No Data")
        return ns

    async def _get(self, *, token: str, path: str) -> Any:
        url = self._portal_url.join(path)
        logger.debug("Portal request: GET %s", url.path)
        try:
            response = await self._client.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise PortalRequestError(str(e) or type(e).__name__) from e
        if not response.is_success:
            raise PortalRequestError(f"HTTP {response.status_code} {response.reason_phrase}")
        try:
            return response.json()
        except ValueError as e:
            raise PortalRequestError("Invalid JSON response") from e

    async def fetch_servers(self, *, token: str, region: str) -> list[dict[str, Any]]:
        """List the Rust console servers on the account in one region.

        Each entry carries `raw_name`, `region` and `server_id`: the public id,
        followed by the internal id when the portal could resolve it.
        """

        prefix = REGION_PATHS[region]
        menu = await self._get(token=token, path=f"/{prefix}/menu/clouds")

        servers: list[dict[str, Any]] = []
        for group in (menu or {}).get("items") or []:
            if "Rust" not in (group.get("label") or "") or not group.get("items"):
                continue
            entry = group["items"][0]
            try:
                # e.g. /eur/server/rust-console/1234567
                public_id = int(entry["data"]["url"].split("/")[4])
            except (KeyError, IndexError, TypeError, ValueError):
                logger.warning("Skipping Unrecognised Server Entry (%s): %r", region, entry.get("label"))
                continue
            servers.append({"raw_name": entry.get("label") or "", "region": region, "server_id": [public_id]})

        try:
            service_ids = await self._get(token=token, path=f"/{prefix}/serviceIds")
        except PortalRequestError as e:
            logger.warning("Failed To Resolve Server IDs (%s): %s", region, e)
            return servers

        by_server = {item.get("serverId"): item.get("serviceId") for item in service_ids or []}
        for server in servers:
            service_id = by_server.get(server["server_id"][0])
            if service_id:
                server["server_id"].append(int(service_id))
        return servers
