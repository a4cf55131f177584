"""Connection session state and its lifecycle controller.

One SessionState per process. Only SessionController writes it; the
delivery gate and the status endpoint read it.

    uninitialized --initialize--> awaiting_scan --ready--> ready
    awaiting_scan --auth_failure--> auth_failed
    awaiting_scan | ready --disconnected--> disconnected
    auth_failed | disconnected --initialize--> awaiting_scan
"""

from __future__ import annotations

import logging
import time
from typing import Any, TextIO

import qrcode

log = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
AWAITING_SCAN = "awaiting_scan"
READY = "ready"
AUTH_FAILED = "auth_failed"
DISCONNECTED = "disconnected"

STATES = frozenset({UNINITIALIZED, AWAITING_SCAN, READY, AUTH_FAILED, DISCONNECTED})

# States from which an (re-)initialization may start
_INITIALIZABLE = frozenset({UNINITIALIZED, AUTH_FAILED, DISCONNECTED})


def render_qr(code: str, out: TextIO) -> None:
    """Print the scan code as a terminal QR block."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(code)
    qr.make(fit=True)
    qr.print_ascii(out=out)


class SessionState:
    """Process-wide connection state. Read-only for everyone but the controller."""

    def __init__(self):
        self._state = UNINITIALIZED
        self.changed_at = time.time()

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == READY

    def _set(self, state: str) -> None:
        if state not in STATES:
            raise ValueError(f"Unknown session state: {state!r}")
        self._state = state
        self.changed_at = time.time()


class SessionController:
    def __init__(self, state: SessionState, connection: Any, fanout: Any,
                 qr_out: TextIO | None = None):
        self.state = state
        self.connection = connection
        self.fanout = fanout
        self.qr_out = qr_out  # Terminal QR rendering off when None

    def _transition(self, event: str, allowed_from: frozenset[str], target: str) -> bool:
        current = self.state.state
        if current not in allowed_from:
            log.warning("Ignoring %s in state %s", event, current)
            return False
        self.state._set(target)
        log.info("Session %s -> %s (%s)", current, target, event)
        return True

    async def initialize(self) -> None:
        """Start (or restart) the connection and wait for a scan."""
        if not self._transition("initialize", _INITIALIZABLE, AWAITING_SCAN):
            return
        try:
            await self.connection.initialize()
        except Exception as e:
            self.on_disconnected(f"initialize failed: {e}")
            raise

    def on_qr(self, code: str) -> None:
        if self.state.state != AWAITING_SCAN:
            log.warning("Ignoring scan code in state %s", self.state.state)
            return
        log.info("Scan code received")
        if self.qr_out is not None:
            render_qr(code, self.qr_out)
        self.fanout.publish("qr", code)

    def on_ready(self) -> None:
        if self._transition("ready", frozenset({AWAITING_SCAN}), READY):
            self.fanout.publish("ready")

    def on_auth_failure(self, reason: str) -> None:
        if self._transition("auth_failure", frozenset({AWAITING_SCAN}), AUTH_FAILED):
            log.error("Authentication failed: %s", reason)
            self.fanout.publish("auth_failure", reason)

    def on_disconnected(self, reason: str) -> None:
        if self._transition("disconnected", frozenset({AWAITING_SCAN, READY}), DISCONNECTED):
            log.warning("Connection lost: %s", reason)
            self.fanout.publish("disconnected", reason)
