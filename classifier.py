"""Inbound content classification.

Turns a raw event into display text plus optional image media. Text and
media are independent: a failed download never costs the message its
text, and an event without text always gets a placeholder.
"""

from __future__ import annotations

import asyncio
import logging
import unicodedata
from dataclasses import dataclass
from typing import Any

from channels import RawEvent
from inbox import MediaRef

log = logging.getLogger(__name__)

PLACEHOLDERS = {
    "image": "[image]",
    "video": "[video]",
    "sticker": "[sticker]",
    "document": "[document]",
}
UNKNOWN_PLACEHOLDER = "[unknown message]"
EMPTY_PLACEHOLDER = "[empty message]"

# Only image-family media is kept (includes image/gif)
RETAINED_MIME_PREFIX = "image/"


def normalize_text(text: str) -> str:
    return unicodedata.normalize("NFC", text)


def classify_text(event: RawEvent) -> str:
    """Display text for an event; never empty."""
    if event.body:
        return normalize_text(event.body)
    if event.has_media:
        return PLACEHOLDERS.get(event.kind, UNKNOWN_PLACEHOLDER)
    return EMPTY_PLACEHOLDER


@dataclass(frozen=True)
class Content:
    text: str
    media: MediaRef | None = None


class ContentClassifier:
    def __init__(self, connection: Any, download_timeout: float = 0.0):
        self.connection = connection
        self.download_timeout = download_timeout

    async def classify(self, event: RawEvent) -> Content:
        text = classify_text(event)
        media = await self._extract_media(event) if event.has_media else None
        return Content(text=text, media=media)

    async def _extract_media(self, event: RawEvent) -> MediaRef | None:
        try:
            if self.download_timeout > 0:
                payload = await asyncio.wait_for(
                    self.connection.download_media(event), timeout=self.download_timeout,
                )
            else:
                payload = await self.connection.download_media(event)
        except Exception as e:
            log.warning("Media download failed for %s (%s): %s", event.sender, event.kind, e)
            return None

        if payload is None:
            return None
        if not payload.mime_type.startswith(RETAINED_MIME_PREFIX):
            log.debug("Discarding %s media from %s", payload.mime_type, event.sender)
            return None
        return MediaRef(mime_type=payload.mime_type, data=payload.data)
