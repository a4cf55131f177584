"""Sender display-name resolution.

Asks the connection for the contact profile. When the lookup fails the
name is derived from the address itself, so the same sender always gets
the same fallback name within and across runs.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

log = logging.getLogger(__name__)

FALLBACK_NAMES = ("Ádám", "Bence", "Csaba", "Dóra", "Eszter", "Fanni", "Gábor", "Hanna")


def strip_suffix(address: str) -> str:
    """Drop the "@c.us" / "@g.us" role suffix."""
    return address.split("@", 1)[0]


def fallback_name(address: str) -> str:
    """Deterministic pseudo-name from the last digit of the address number."""
    digits = re.sub(r"\D", "", strip_suffix(address))
    index = int(digits[-1]) if digits else 0
    return FALLBACK_NAMES[index % len(FALLBACK_NAMES)]


class IdentityResolver:
    """Resolve sender addresses to human-readable names."""

    def __init__(self, connection: Any, lookup_timeout: float = 0.0):
        self.connection = connection
        self.lookup_timeout = lookup_timeout

    async def resolve(self, address: str) -> str:
        try:
            if self.lookup_timeout > 0:
                contact = await asyncio.wait_for(
                    self.connection.get_contact(address), timeout=self.lookup_timeout,
                )
            else:
                contact = await self.connection.get_contact(address)
            return contact.pushname or contact.name or strip_suffix(address)
        except Exception as e:
            name = fallback_name(address)
            log.debug("Contact lookup failed for %s (%s), using %s", address, e, name)
            return name
