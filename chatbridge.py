#!/usr/bin/env python3
"""chatbridge — bridges a messaging-network account to browser clients.

Entry point. Wires config → connection → session → inbox → fanout → web.
Handles PID file, Unix signals, and the inbound event loop.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any

# Add project directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from channels import ConnectionEvent, RawEvent, create_connection, dispatch_event
from classifier import ContentClassifier
from config import Config, ConfigError, load_config
from delivery import DeliveryGate
from fanout import Fanout
from identity import IdentityResolver
from inbox import Inbox, NormalizedMessage
from retry import RetryPolicy
from session import SessionController, SessionState

log = logging.getLogger("chatbridge")

# Queue item asking the loop to (re-)initialize the session
_REINITIALIZE = object()

# ─── PID File ────────────────────────────────────────────────────

def _check_pid_file(path: Path) -> None:
    """Refuse to start if another instance is live."""
    if path.exists():
        try:
            pid = int(path.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"Another instance is running (PID {pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except PermissionError:
            print(f"Another instance is running (PID {pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            log.info("Stale PID file found, removing")
            path.unlink()


def _write_pid_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(os.getpid()))


def _remove_pid_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        log.debug("Could not remove PID file %s", path)


# ─── Daemon ──────────────────────────────────────────────────────

class BridgeDaemon:
    """Owns every component and implements the connection listener."""

    def __init__(self, config: Config, connection: Any = None,
                 clock: Any = time.time):
        self.config = config
        self.running = True
        self.start_time = time.time()
        self._clock = clock
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=config.inbound_queue_size)
        self.connection = connection if connection is not None else create_connection(config)

        self.session_state = SessionState()
        self.inbox = Inbox()
        self.fanout = Fanout(self.inbox, queue_size=config.client_queue_size)
        self.session = SessionController(
            self.session_state, self.connection, self.fanout,
            qr_out=sys.stderr if config.terminal_qr else None,
        )
        self.identity = IdentityResolver(self.connection, config.inbound_lookup_timeout)
        self.classifier = ContentClassifier(self.connection, config.inbound_download_timeout)
        self.gate = DeliveryGate(
            self.connection,
            self.session_state,
            RetryPolicy(config.delivery_max_attempts, config.delivery_retry_delay),
        )
        self._server: Any = None

    def _setup_logging(self) -> None:
        """Configure logging to file + stderr."""
        log_file = self.config.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)

        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        fh = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=self.config.log_max_bytes,
            backupCount=self.config.log_backup_count, encoding="utf-8",
        )
        fh.setFormatter(fmt)
        fh.setLevel(logging.DEBUG)

        # Stderr handler (for journald)
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(fmt)
        sh.setLevel(logging.INFO)

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        root.addHandler(fh)
        root.addHandler(sh)

        # Silence noisy third-party loggers
        for name in ("httpx", "httpcore", "aiohttp.access"):
            logging.getLogger(name).setLevel(logging.WARNING)

    # ─── Connection Listener ─────────────────────────────────────

    async def on_qr(self, code: str) -> None:
        self.session.on_qr(code)

    async def on_ready(self) -> None:
        self.session.on_ready()

    async def on_auth_failure(self, reason: str) -> None:
        self.session.on_auth_failure(reason)

    async def on_disconnected(self, reason: str) -> None:
        self.session.on_disconnected(reason)

    async def on_message(self, event: RawEvent) -> None:
        await self._process_message(event)

    async def _process_message(self, event: RawEvent) -> NormalizedMessage:
        """Resolve, classify, store, broadcast. Never drops the message."""
        name = await self.identity.resolve(event.sender)
        content = await self.classifier.classify(event)
        msg = NormalizedMessage(
            sender_name=name,
            text=content.text,
            media=content.media,
            timestamp_ms=int(self._clock() * 1000),
            sender_address=event.sender,
            from_me=event.from_me,
        )
        self.inbox.append(msg)
        log.info("%s (%s): %s", name, event.sender, content.text)
        self.fanout.publish("message", msg.to_dict())
        return msg

    # ─── Loops ───────────────────────────────────────────────────

    async def _connection_reader(self) -> None:
        """Read events from the connection and push to queue."""
        try:
            async for event in self.connection.events():
                await self.queue.put(event)
        except asyncio.CancelledError:
            return
        except Exception as e:
            log.error("Connection reader failed: %s", e)
        # Connection exhausted (e.g., piped stdin EOF): signal shutdown
        await self.queue.put(None)

    async def _message_loop(self) -> None:
        """Inbound event loop — strictly sequential, one event at a time."""
        while self.running:
            try:
                item = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            # Sentinel from connection reader
            if item is None:
                self.running = False
                break

            try:
                if item is _REINITIALIZE:
                    await self.session.initialize()
                elif isinstance(item, ConnectionEvent):
                    await dispatch_event(self, item)
                else:
                    log.warning("Unexpected queue item: %r", item)
            except Exception as e:
                kind = "initialize" if item is _REINITIALIZE else item.kind
                log.error("Failed to handle %s event: %s", kind, e, exc_info=True)

    def request_initialize(self) -> bool:
        """Queue a session (re-)initialization behind pending events."""
        try:
            self.queue.put_nowait(_REINITIALIZE)
        except asyncio.QueueFull:
            log.warning("Inbound queue full, initialize request dropped")
            return False
        log.info("Session initialize requested")
        return True

    def _build_status(self) -> dict:
        """Build status payload for HTTP /status."""
        return {
            "status": "ok",
            "state": self.session_state.state,
            "ready": self.session_state.is_ready,
            "inbox_size": len(self.inbox),
            "clients": self.fanout.client_count,
            "uptime_seconds": int(time.time() - self.start_time),
        }

    def _setup_signals(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register Unix signal handlers."""
        def handle_sigusr1():
            log.info("SIGUSR1: re-initializing session")
            self.request_initialize()

        def handle_sigterm():
            log.info("SIGTERM: shutting down gracefully")
            self.running = False

        try:
            loop.add_signal_handler(signal.SIGUSR1, handle_sigusr1)
            loop.add_signal_handler(signal.SIGTERM, handle_sigterm)
            loop.add_signal_handler(signal.SIGINT, handle_sigterm)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async def run(self) -> None:
        """Main entry point — starts all components and runs until stopped."""
        cfg = self.config
        pid_path = cfg.state_dir / "chatbridge.pid"

        self._setup_logging()
        log.info("Starting chatbridge (%s connection)", cfg.connection_type)

        _check_pid_file(pid_path)
        _write_pid_file(pid_path)

        reader_task: asyncio.Task | None = None
        try:
            from channels.realtime import RealtimeServer
            self._server = RealtimeServer(
                fanout=self.fanout,
                send_message=self.gate.send,
                host=cfg.http_host,
                port=cfg.http_port,
                static_dir=cfg.static_dir,
                get_status=self._build_status,
                request_initialize=self.request_initialize,
            )
            await self._server.start()

            self._setup_signals(asyncio.get_running_loop())

            reader_task = asyncio.create_task(self._connection_reader())
            await self.session.initialize()

            log.info("chatbridge running (PID %d)", os.getpid())
            await self._message_loop()

        except Exception as e:
            log.error("Fatal error: %s", e, exc_info=True)
            raise
        finally:
            if self._server is not None:
                await self._server.stop()
            if reader_task is not None:
                reader_task.cancel()
                try:
                    await reader_task
                except asyncio.CancelledError:
                    pass
            try:
                await self.connection.close()
            except Exception as e:
                log.warning("Connection close failed: %s", e)
            _remove_pid_file(pid_path)
            log.info("chatbridge stopped")


# ─── CLI Entry Point ─────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="chatbridge — messaging network to browser bridge",
    )
    parser.add_argument(
        "-c", "--config",
        default=os.environ.get("CHATBRIDGE_CONFIG"),
        help="Path to config file (default: $CHATBRIDGE_CONFIG or ./chatbridge.toml)",
    )
    parser.add_argument(
        "--connection",
        help="Override connection type (e.g., 'cli' for testing)",
    )
    parser.add_argument(
        "--port", type=int,
        help="Override HTTP port",
    )
    args = parser.parse_args()

    # Build overrides from CLI args
    overrides: dict[str, Any] = {}
    if args.connection:
        overrides["connection.type"] = args.connection
    if args.port is not None:
        overrides["http.port"] = args.port

    try:
        config = load_config(args.config, overrides=overrides)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    daemon = BridgeDaemon(config)
    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
