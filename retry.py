"""Bounded retry with a fixed delay.

Knows nothing about what it retries: callers pass an async callable and a
label for the logs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 1.0    # Seconds between attempts; no wait after the last one

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")


class RetryExhausted(Exception):
    """Raised when every attempt failed. The last error is chained."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        super().__init__(f"{label}: {attempts} attempt(s) failed, last error: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Run operation until it succeeds or the policy is exhausted."""
    last_error: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            log.warning("%s failed (attempt %d/%d): %s",
                        label, attempt, policy.max_attempts, e)
            if attempt < policy.max_attempts:
                await sleep(policy.delay)
    raise RetryExhausted(label, policy.max_attempts, last_error) from last_error
