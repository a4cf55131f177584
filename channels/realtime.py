"""Realtime web server for browser clients.

Serves the static UI, a WebSocket endpoint carrying fan-out events and
client send requests, and a status endpoint for monitoring.

Endpoints:
    GET  /ws                — WebSocket: {"event": ..., "data": ...} JSON frames
    GET  /api/v1/status     — Health check + bridge stats
    POST /api/v1/initialize — Restart the network session after logout or auth failure
    GET  /                  — Static UI (index.html) when the static dir exists
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from aiohttp import WSMsgType, web

from delivery import SendError
from fanout import Fanout, Subscription

log = logging.getLogger(__name__)


class RealtimeServer:
    """aiohttp server that bridges Fanout subscriptions to WebSockets."""

    def __init__(
        self,
        fanout: Fanout,
        send_message: Callable[[Any, Any], Awaitable[str]],
        host: str,
        port: int,
        static_dir: Path | None = None,
        get_status: Callable[[], dict] | None = None,
        request_initialize: Callable[[], bool] | None = None,
        heartbeat: float = 30.0,
    ):
        self.fanout = fanout
        self.send_message = send_message
        self.host = host
        self.port = port
        self.static_dir = static_dir
        self._get_status = get_status
        self._request_initialize = request_initialize
        self._heartbeat = heartbeat
        self._runner: web.AppRunner | None = None
        self._send_tasks: set[asyncio.Task] = set()

    # ─── Lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/api/v1/status", self._handle_status)
        if self._request_initialize is not None:
            app.router.add_post("/api/v1/initialize", self._handle_initialize)
        if self.static_dir is not None and self.static_dir.is_dir():
            app.router.add_get("/", self._handle_index)
            app.router.add_static("/", self.static_dir)
        else:
            log.info("Static dir not found, serving API only: %s", self.static_dir)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Server running on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Graceful shutdown. In-flight sends are allowed to finish."""
        if self._send_tasks:
            await asyncio.gather(*self._send_tasks, return_exceptions=True)
        if self._runner:
            await self._runner.cleanup()
        log.info("Server stopped")

    # ─── Endpoints ────────────────────────────────────────────────

    async def _handle_index(self, request: web.Request) -> web.StreamResponse:
        index = self.static_dir / "index.html"
        if not index.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(index)

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /api/v1/status — health check + stats."""
        if self._get_status:
            status = self._get_status()
        else:
            status = {"status": "ok"}
        return web.json_response(status, status=200)

    async def _handle_initialize(self, request: web.Request) -> web.Response:
        """POST /api/v1/initialize — queue a session restart."""
        if not self._request_initialize():
            return web.json_response({"accepted": False, "error": "inbound queue full"},
                                     status=503)
        return web.json_response({"accepted": True}, status=202)

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self._heartbeat)
        await ws.prepare(request)
        log.info("Web client connected from %s", request.remote)

        sub = self.fanout.subscribe()
        pump = asyncio.create_task(self._pump(sub, ws))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._handle_frame(sub, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    log.warning("WebSocket error from client %d: %s", sub.id, ws.exception())
        finally:
            self.fanout.unsubscribe(sub)
            await self._stop_pump(sub, pump)
        return ws

    async def _stop_pump(self, sub: Subscription, pump: asyncio.Task) -> None:
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Client %d pump ended with error: %s", sub.id, e)

    async def _pump(self, sub: Subscription, ws: web.WebSocketResponse) -> None:
        """Drain one client's queue onto its socket, in order."""
        while not ws.closed:
            envelope = await sub.next()
            try:
                await ws.send_json(envelope.to_dict())
            except ConnectionResetError:
                log.debug("Client %d went away mid-send", sub.id)
                return

    # ─── Client Frames ───────────────────────────────────────────

    def _handle_frame(self, sub: Subscription, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("Invalid JSON from client %d: %s", sub.id, raw[:200])
            return
        if not isinstance(frame, dict):
            log.warning("Client %d frame not an object, ignoring", sub.id)
            return

        event = frame.get("event")
        if event != "sendMessage":
            log.warning("Unknown client event from %d: %r", sub.id, event)
            return
        data = frame.get("data")
        if not isinstance(data, dict):
            data = {}

        # Sends run independently of inbound processing and of each other
        task = asyncio.create_task(self._send(sub, data.get("to"), data.get("text")))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send(self, sub: Subscription, to: Any, text: Any) -> None:
        try:
            address = await self.send_message(to, text)
        except SendError as e:
            sub.push("sendResult", {"ok": False, "to": to, "error": str(e)})
            return
        sub.push("sendResult", {"ok": True, "to": address})
