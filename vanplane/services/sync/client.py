from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx

from vanplane.core.config import Settings, get_settings
from vanplane.core.errors import ProtocolError, VanError
from vanplane.services.sync import protocol
from vanplane.services.sync.objects import content_hash


logger = logging.getLogger(__name__)


class SyncRequestError(VanError):
    """The controller answered with a failure response."""

    def __init__(self, status_code: int, description: str) -> None:
        super().__init__(f"{status_code}: {description}")
        self.status_code = status_code
        self.description = description


class SiteSyncClient:
    """Site side of the synchronization protocol.

    Keeps the last fetched copy of every object and uses heartbeats to learn
    which of them are stale.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        site_id: str | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 2,
        backoff_ms: int = 200,
    ) -> None:
        self._settings = settings or get_settings()
        self.base_url = (base_url or self._settings.controller_base_url).rstrip("/")
        self.site_id = site_id
        self.objects: dict[str, Any] = {}
        self._max_retries = max_retries
        self._backoff_ms = backoff_ms
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._settings.sync_timeout_ms / 1000,
            transport=transport,
        )

    async def __aenter__(self) -> "SiteSyncClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep((self._backoff_ms / 1000) * (2**attempt))

    async def _send(self, message: Mapping[str, Any]) -> dict[str, Any]:
        # Retry only transport failures and 5xx answers; failure responses are final.
        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.post(self._settings.sync_route, json=dict(message))
            except httpx.TransportError:
                if attempt >= self._max_retries:
                    raise
                await self._backoff(attempt)
                continue
            try:
                body = response.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                # Proxies in front of the controller answer 5xx with HTML pages.
                if response.status_code >= 500 and attempt < self._max_retries:
                    logger.info("Controller answered %s without a sync body, retrying", response.status_code)
                    await self._backoff(attempt)
                    continue
                raise SyncRequestError(response.status_code, response.reason_phrase or "Malformed sync response")
            code = body.get("statusCode")
            if isinstance(code, int) and code >= 500 and attempt < self._max_retries:
                logger.info("Controller answered %s, retrying", code)
                await self._backoff(attempt)
                continue
            if not protocol.is_success(body):
                raise SyncRequestError(int(code or response.status_code), str(body.get("statusDescription", "")))
            return body
        raise ProtocolError("Exhausted sync retries")

    def _require_site(self) -> str:
        if not self.site_id:
            raise ProtocolError("Site id unknown; claim an invitation first")
        return self.site_id

    def hashset(self) -> dict[str, str]:
        return {name: content_hash(data) for name, data in self.objects.items()}

    async def claim(self, claim_id: str, name: str) -> dict[str, Any]:
        body = await self._send(protocol.assert_claim(claim_id, name))
        self.site_id = body["siteClient"]["siteId"]
        return body

    async def heartbeat(self, address: str = "") -> list[str]:
        body = await self._send(protocol.heartbeat(self._require_site(), self.hashset(), address))
        return list(body.get("staleObjects", []))

    async def get_object(self, object_name: str) -> Any:
        body = await self._send(protocol.get_object(self._require_site(), object_name))
        if content_hash(body["data"]) != body["hash"]:
            raise ProtocolError(f"Hash mismatch for object {object_name}")
        self.objects[object_name] = body["data"]
        return body["data"]

    async def synchronize(self, address: str = "") -> list[str]:
        """Heartbeat, then fetch every object the controller reports as stale."""
        stale = await self.heartbeat(address)
        for name in stale:
            await self.get_object(name)
        return stale
