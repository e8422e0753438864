"""Thin async client for the Convex HTTP function API.

Every read and write goes through a named store function
(``"detentionEvents:get"``, ``"invoices:markSent"`` ...). The client only
transports arguments and results; documents come back as plain dicts with
Convex field names (``_id``, ``arrivalTime`` in Unix milliseconds, ...).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the store rejects a call or cannot be reached."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class ConvexClient:
    def __init__(
        self,
        url: str | None,
        *,
        deploy_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._deploy_key = deploy_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._open_sessions = 0
        self._owns_connection = False

    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        if not self._url:
            raise StoreError("connect", "CONVEX_URL is not configured")
        headers = {"Content-Type": "application/json"}
        if self._deploy_key:
            headers["Authorization"] = f"Convex {self._deploy_key}"
        self._client = httpx.AsyncClient(
            base_url=self._url.rstrip("/"),
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["ConvexClient"]:
        """Keep the client open while any caller is inside a session.

        Sessions overlap across concurrent requests and the scheduler. The
        connection opened by the first session closes when the last one exits;
        a connection opened explicitly with :meth:`connect` stays open.
        """
        if self._open_sessions == 0 and not self.is_connected():
            await self.connect()
            self._owns_connection = True
        self._open_sessions += 1
        try:
            yield self
        finally:
            self._open_sessions -= 1
            if self._open_sessions == 0 and self._owns_connection:
                self._owns_connection = False
                await self.disconnect()

    async def query(self, path: str, args: Dict[str, Any] | None = None) -> Any:
        return await self._call("query", path, args)

    async def mutation(self, path: str, args: Dict[str, Any] | None = None) -> Any:
        return await self._call("mutation", path, args)

    async def action(self, path: str, args: Dict[str, Any] | None = None) -> Any:
        return await self._call("action", path, args)

    async def _call(self, kind: str, path: str, args: Dict[str, Any] | None) -> Any:
        if self._client is None:
            raise StoreError(path, "client is not connected")

        # Convex optional validators reject explicit nulls.
        clean_args = {key: value for key, value in (args or {}).items() if value is not None}
        try:
            response = await self._client.post(
                f"/api/{kind}",
                json={"path": path, "args": clean_args, "format": "json"},
            )
        except httpx.HTTPError as exc:
            logger.error("Store %s %s failed: %s", kind, path, exc)
            raise StoreError(path, str(exc)) from exc

        if response.status_code >= 400:
            logger.error("Store %s %s returned HTTP %s", kind, path, response.status_code)
            raise StoreError(path, f"HTTP {response.status_code}: {response.text}")

        payload = response.json()
        if payload.get("status") != "success":
            message = payload.get("errorMessage") or "unknown store error"
            logger.warning("Store %s %s reported an error: %s", kind, path, message)
            raise StoreError(path, message)

        for line in payload.get("logLines") or []:
            logger.debug("[%s] %s", path, line)
        return payload.get("value")


db = ConvexClient(
    settings.convex.url,
    deploy_key=settings.convex.deploy_key,
    timeout=settings.convex.timeout_seconds,
)
