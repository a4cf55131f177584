"""Sidecar connection via an HTTP gateway.

The network client (browser automation, session storage, pairing) runs
in a separate gateway process. This module only speaks its HTTP API.

Inbound: GET /events long polling (httpx async).
Outbound: POST /messages, GET /contacts/{jid}, GET /messages/{id}/media.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator

import httpx

from . import (
    EVENT_KINDS,
    EVENT_MESSAGE,
    ConnectionEvent,
    Contact,
    MediaPayload,
    RawEvent,
)

log = logging.getLogger(__name__)

# Reconnect policy: 1s initial -> 10s max, factor 2, 20% jitter
_RECONNECT_INITIAL = 1.0
_RECONNECT_MAX = 10.0
_RECONNECT_FACTOR = 2.0
_RECONNECT_JITTER = 0.2


class SidecarError(RuntimeError):
    """Raised when the gateway answers with an error."""


def parse_event(item: dict) -> ConnectionEvent | None:
    """Parse one gateway event dict into a ConnectionEvent, or None to skip."""
    kind = item.get("type", "")
    if kind not in EVENT_KINDS:
        log.debug("Ignoring gateway event of type %r", kind)
        return None
    data = item.get("data")
    if kind != EVENT_MESSAGE:
        return ConnectionEvent(kind, data)
    if not isinstance(data, dict) or not data.get("from"):
        log.warning("Gateway message event without sender, skipping")
        return None
    return ConnectionEvent(kind, RawEvent(
        sender=data["from"],
        body=data.get("body") or "",
        has_media=bool(data.get("hasMedia", False)),
        kind=data.get("type") or "chat",
        from_me=bool(data.get("fromMe", False)),
        message_id=str(data.get("id") or ""),
    ))


class SidecarConnection:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        poll_timeout: int = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.poll_timeout = poll_timeout
        self._cursor: int = 0
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.poll_timeout + 30.0, connect=10.0),
                headers=headers,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """Call a gateway endpoint and return its JSON body."""
        client = await self._get_client()
        resp = await client.request(method, f"{self.base_url}{path}", **kwargs)

        # Gateway error bodies are JSON with an "error" field
        try:
            data = resp.json()
        except ValueError as exc:
            resp.raise_for_status()
            raise SidecarError(f"Gateway error ({path}): non-JSON response {resp.status_code}") from exc

        if resp.status_code >= 400:
            desc = data.get("error") if isinstance(data, dict) else None
            raise SidecarError(f"Gateway error ({path}): {desc or f'HTTP {resp.status_code}'}")
        return data if isinstance(data, dict) else {"result": data}

    async def initialize(self) -> None:
        """Ask the gateway to start (or resume) the network session."""
        try:
            await self._request("POST", "/initialize")
            log.info("Sidecar gateway initialized: %s", self.base_url)
        except Exception as e:
            log.error("Cannot reach sidecar gateway: %s", e)
            raise ConnectionError(f"Sidecar gateway unreachable: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        """Long-polling loop. Auto-reconnects on failure."""
        backoff = _RECONNECT_INITIAL
        while True:
            try:
                async for event in self._poll_loop():
                    yield event
                    backoff = _RECONNECT_INITIAL
            except asyncio.CancelledError:
                return
            except Exception as e:
                jitter = backoff * _RECONNECT_JITTER * (random.random() * 2 - 1)  # noqa: S311
                wait = backoff + jitter
                log.warning("Sidecar poll disconnected (%s), reconnecting in %.1fs", e, wait)
                await asyncio.sleep(wait)
                backoff = min(backoff * _RECONNECT_FACTOR, _RECONNECT_MAX)

    async def _poll_loop(self) -> AsyncIterator[ConnectionEvent]:
        """Single polling session — yields events until error."""
        while True:
            data = await self._request(
                "GET", "/events",
                params={"cursor": self._cursor, "timeout": self.poll_timeout},
            )
            cursor = data.get("cursor")
            if isinstance(cursor, int) and cursor >= self._cursor:
                self._cursor = cursor

            for item in data.get("events", []):
                if not isinstance(item, dict):
                    continue
                event = parse_event(item)
                if event is not None:
                    yield event

    async def get_contact(self, address: str) -> Contact:
        data = await self._request("GET", f"/contacts/{address}")
        return Contact(pushname=data.get("pushname"), name=data.get("name"))

    async def send_message(self, address: str, text: str) -> None:
        await self._request("POST", "/messages", json={"to": address, "text": text})

    async def download_media(self, event: RawEvent) -> MediaPayload | None:
        if not event.message_id:
            return None
        data = await self._request("GET", f"/messages/{event.message_id}/media")
        if not data.get("mimetype") or not data.get("data"):
            return None
        return MediaPayload(mime_type=data["mimetype"], data=data["data"])
