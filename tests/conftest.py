"""Shared fixtures for the chatbridge test suite.

All tests use in-memory fakes for the network connection.
Nothing touches ~/.chatbridge/ or a real messaging account.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path so imports work
_root = Path(__file__).parent.parent
sys.path.insert(0, str(_root))

from channels import Contact, MediaPayload  # noqa: E402
from inbox import Inbox, MediaRef, NormalizedMessage  # noqa: E402


class FakeConnection:
    """In-memory connection. Behaviour is set per test through attributes."""

    def __init__(self):
        self.contacts: dict[str, Contact] = {}
        self.lookup_error: Exception | None = None
        self.media: MediaPayload | None = None
        self.media_error: Exception | None = None
        self.send_failures = 0          # Fail this many sends before succeeding
        self.send_error: Exception = RuntimeError("send failed")
        self.sent: list[tuple[str, str]] = []
        self.send_calls = 0
        self.initialized = 0
        self.closed = False
        self.lookups: list[str] = []
        self.downloads: list = []
        self.queued_events: list = []

    async def initialize(self) -> None:
        self.initialized += 1

    async def close(self) -> None:
        self.closed = True

    async def events(self):
        for event in self.queued_events:
            yield event

    async def get_contact(self, address: str) -> Contact:
        self.lookups.append(address)
        if self.lookup_error is not None:
            raise self.lookup_error
        if address not in self.contacts:
            raise LookupError(f"no contact {address}")
        return self.contacts[address]

    async def send_message(self, address: str, text: str) -> None:
        self.send_calls += 1
        if self.send_failures > 0:
            self.send_failures -= 1
            raise self.send_error
        self.sent.append((address, text))

    async def download_media(self, event) -> MediaPayload | None:
        self.downloads.append(event)
        if self.media_error is not None:
            raise self.media_error
        return self.media


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def inbox():
    return Inbox()


def make_message(text: str = "hello", sender: str = "36301234567@c.us",
                 name: str = "Anna", ts: int = 1_700_000_000_000,
                 media: MediaRef | None = None, from_me: bool = False) -> NormalizedMessage:
    return NormalizedMessage(
        sender_name=name,
        text=text,
        media=media,
        timestamp_ms=ts,
        sender_address=sender,
        from_me=from_me,
    )


@pytest.fixture
def minimal_toml_data():
    """Minimal valid config data (as parsed dict, not raw TOML)."""
    return {
        "connection": {
            "type": "cli",
            "cli": {"contacts": {"36301234567": "Anna"}},
        },
        "http": {"host": "127.0.0.1", "port": 3000},
        "delivery": {"max_attempts": 3, "retry_delay": 1.0},
        "paths": {
            "state_dir": "/tmp/test-chatbridge-state",
            "log_file": "/tmp/test-chatbridge.log",
        },
    }


@pytest.fixture
def message_factory():
    return make_message
