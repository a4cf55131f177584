"""Connection interface and shared types.

Defines the contract between the bridge and the messaging-network
connection. Each connection implements events/lookup/download/send for
its transport; the bridge only sees the types below.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from config import Config


# Event kinds emitted by a connection
EVENT_QR = "qr"
EVENT_READY = "ready"
EVENT_AUTH_FAILURE = "auth_failure"
EVENT_DISCONNECTED = "disconnected"
EVENT_MESSAGE = "message"

EVENT_KINDS = frozenset({
    EVENT_QR, EVENT_READY, EVENT_AUTH_FAILURE, EVENT_DISCONNECTED, EVENT_MESSAGE,
})


@dataclass(frozen=True)
class RawEvent:
    sender: str               # "36301234567@c.us", "1203630...@g.us"
    body: str = ""
    has_media: bool = False
    kind: str = "chat"        # "chat", "image", "video", "sticker", "document", ...
    from_me: bool = False
    message_id: str = ""      # Connection-specific handle for media download


@dataclass(frozen=True)
class Contact:
    pushname: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class MediaPayload:
    mime_type: str
    data: str                 # Base64 payload as delivered by the network


@dataclass(frozen=True)
class ConnectionEvent:
    kind: str
    payload: Any = None


class Connection(Protocol):
    async def initialize(self) -> None: ...
    def events(self) -> AsyncIterator[ConnectionEvent]: ...
    async def get_contact(self, address: str) -> Contact: ...
    async def send_message(self, address: str, text: str) -> None: ...
    async def download_media(self, event: RawEvent) -> MediaPayload | None: ...
    async def close(self) -> None: ...


class ConnectionListener(Protocol):
    async def on_qr(self, code: str) -> None: ...
    async def on_ready(self) -> None: ...
    async def on_auth_failure(self, reason: str) -> None: ...
    async def on_disconnected(self, reason: str) -> None: ...
    async def on_message(self, event: RawEvent) -> None: ...


async def dispatch_event(listener: ConnectionListener, event: ConnectionEvent) -> None:
    """Route one connection event to the listener handler for its kind."""
    if event.kind == EVENT_MESSAGE:
        await listener.on_message(event.payload)
    elif event.kind == EVENT_QR:
        await listener.on_qr(str(event.payload or ""))
    elif event.kind == EVENT_READY:
        await listener.on_ready()
    elif event.kind == EVENT_AUTH_FAILURE:
        await listener.on_auth_failure(str(event.payload or ""))
    elif event.kind == EVENT_DISCONNECTED:
        await listener.on_disconnected(str(event.payload or ""))
    else:
        raise ValueError(f"Unknown connection event: {event.kind!r}")


def create_connection(config: Config) -> Connection:
    """Factory: create connection from config."""
    conn_type = config.connection_type

    if conn_type == "cli":
        from .cli import CLIConnection
        return CLIConnection(contacts=config.cli_contacts)
    if conn_type == "sidecar":
        from .sidecar import SidecarConnection
        token = config.sidecar_token
        return SidecarConnection(
            base_url=config.sidecar_base_url,
            token=token,
            poll_timeout=config.sidecar_poll_timeout,
        )
    raise ValueError(f"Unknown connection type: {conn_type!r}")
