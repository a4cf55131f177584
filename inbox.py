"""Normalized message records and the in-memory inbox.

The inbox is the replay history for newly connected clients. It lives for
the process lifetime only and is never trimmed.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MediaRef:
    mime_type: str
    data: str             # Base64 payload

    def to_dict(self) -> dict:
        return {"mimetype": self.mime_type, "data": self.data}


@dataclass(frozen=True)
class NormalizedMessage:
    sender_name: str
    text: str             # Never empty: placeholder when the event had no text
    media: MediaRef | None
    timestamp_ms: int
    sender_address: str
    from_me: bool = False

    def to_dict(self) -> dict:
        """Wire form consumed by browser clients."""
        return {
            "from": self.sender_name,
            "text": self.text,
            "media": self.media.to_dict() if self.media else None,
            "t": self.timestamp_ms,
            "jid": self.sender_address,
            "self": self.from_me,
        }


class Inbox:
    """Append-only ordered log of normalized messages.

    Single writer (the inbound message loop), any number of readers.
    snapshot() copies, so readers never see a half-appended state.
    """

    def __init__(self):
        self._messages: list[NormalizedMessage] = []

    def append(self, msg: NormalizedMessage) -> None:
        self._messages.append(msg)

    def snapshot(self) -> tuple[NormalizedMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
