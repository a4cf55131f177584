"""CLI connection — stdin/stdout stand-in for the messaging network.

The simplest possible connection. No network account needed.

Input lines:
    <number-or-jid> <text>        inbound text message
    /media <number-or-jid> <kind> inbound attachment without text
    /disconnect [reason]          connection lost
    /authfail [reason]            authentication rejected
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from collections.abc import AsyncIterator

from . import (
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ConnectionEvent,
    Contact,
    MediaPayload,
    RawEvent,
)


def _to_address(token: str) -> str:
    return token if "@" in token else f"{token}@c.us"


class CLIConnection:
    def __init__(self, contacts: dict[str, str] | None = None):
        # Number (without suffix) -> display name
        self._contacts = dict(contacts or {})
        self._initialized = asyncio.Event()
        self._ids = itertools.count(1)

    async def initialize(self) -> None:
        self._initialized.set()

    async def close(self) -> None:
        pass

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        await self._initialized.wait()
        yield ConnectionEvent(EVENT_QR, f"cli-{uuid.uuid4().hex[:12]}")
        yield ConnectionEvent(EVENT_READY)
        while True:
            try:
                line = await asyncio.to_thread(input, "")
            except (EOFError, KeyboardInterrupt):
                return
            event = self.parse_line(line)
            if event is not None:
                yield event

    def parse_line(self, line: str) -> ConnectionEvent | None:
        """Turn one input line into a connection event, or None to skip."""
        line = line.strip()
        if not line:
            return None

        if line.startswith("/"):
            command, _, rest = line.partition(" ")
            rest = rest.strip()
            if command == "/disconnect":
                return ConnectionEvent(EVENT_DISCONNECTED, rest or "cli disconnect")
            if command == "/authfail":
                return ConnectionEvent(EVENT_AUTH_FAILURE, rest or "cli auth failure")
            if command == "/media":
                parts = rest.split()
                if not parts:
                    return None
                kind = parts[1] if len(parts) > 1 else "image"
                return ConnectionEvent(EVENT_MESSAGE, RawEvent(
                    sender=_to_address(parts[0]),
                    has_media=True,
                    kind=kind,
                    message_id=str(next(self._ids)),
                ))
            return None

        sender, _, text = line.partition(" ")
        return ConnectionEvent(EVENT_MESSAGE, RawEvent(
            sender=_to_address(sender),
            body=text.strip(),
            message_id=str(next(self._ids)),
        ))

    async def get_contact(self, address: str) -> Contact:
        number = address.split("@", 1)[0]
        name = self._contacts.get(number)
        if name is None:
            raise LookupError(f"Unknown contact: {address}")
        return Contact(pushname=name)

    async def send_message(self, address: str, text: str) -> None:
        print(f"-> {address}: {text}", flush=True)

    async def download_media(self, event: RawEvent) -> MediaPayload | None:
        raise LookupError("CLI connection carries no media payloads")
