"""Outbound delivery gate.

Gates client send requests on session readiness and input validity,
canonicalizes the destination address, and delivers through the
connection under a bounded retry policy.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from classifier import normalize_text
from retry import RetryExhausted, RetryPolicy, retry_async

log = logging.getLogger(__name__)

USER_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"


class SendError(Exception):
    """Base for every rejected or failed send."""


class NotReadyError(SendError):
    """Session is not ready; nothing was sent."""


class InvalidSendRequest(SendError):
    """Missing destination/text or an address that canonicalizes to nothing."""


class DeliveryFailedError(SendError):
    """The send primitive failed on every attempt."""

    def __init__(self, to: str, attempts: int, last_error: BaseException):
        super().__init__(f"Delivery to {to} failed after {attempts} attempt(s): {last_error}")
        self.to = to
        self.attempts = attempts
        self.last_error = last_error


def canonicalize_jid(raw: str) -> str:
    """Return the suffixed address form, or "" when none can be built."""
    if not raw:
        return ""
    if raw.endswith(USER_SUFFIX) or raw.endswith(GROUP_SUFFIX):
        return raw
    digits = re.sub(r"\D", "", raw)
    return f"{digits}{USER_SUFFIX}" if digits else ""


class DeliveryGate:
    def __init__(self, connection: Any, session_state: Any, policy: RetryPolicy | None = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.connection = connection
        self.session_state = session_state
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def send(self, to: Any, text: Any) -> str:
        """Deliver text to a destination. Returns the canonical address.

        Raises NotReadyError, InvalidSendRequest or DeliveryFailedError.
        """
        if not self.session_state.is_ready:
            log.warning("Send rejected: session not ready (%s)", self.session_state.state)
            raise NotReadyError(f"session is {self.session_state.state}")
        if not isinstance(to, str) or not isinstance(text, str) or not to or not text:
            log.warning("Send rejected: missing destination or text")
            raise InvalidSendRequest("\"to\" and \"text\" are required")

        address = canonicalize_jid(to)
        if not address:
            log.warning("Send rejected: invalid address %r", to)
            raise InvalidSendRequest(f"invalid address: {to!r}")

        body = normalize_text(text)

        async def _attempt() -> None:
            await self.connection.send_message(address, body)

        try:
            await retry_async(_attempt, self.policy, label=f"Send to {address}", sleep=self._sleep)
        except RetryExhausted as e:
            log.error("Send to %s gave up after %d attempt(s): %s",
                      address, e.attempts, e.last_error)
            raise DeliveryFailedError(address, e.attempts, e.last_error) from e.last_error

        log.info("Message sent: %s -> %s", address, body)
        return address
