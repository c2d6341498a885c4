"""
============================================================================
PINGMASTER - HTTP SERVER
============================================================================
A small aiohttp server alongside the engine:

    GET /                                 → 200 "OK" (liveness)
    GET /health                           → 200 JSON diagnostics from the
                                            scheduler, dispatcher and channels
    GET /notifications/stream?user_id=N   → Server-Sent Events stream of
                                            the user's notifications

The stream handler registers a PushStream with the broadcaster, writes
every queued frame to the response, and unregisters the stream when the
client goes away or the broadcaster shuts down. User identity comes from
the query string; authentication is handled in front of this server.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import time
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from channels.push import PushBroadcaster
from config.settings import Settings, get_settings
from utils.helpers import ProcessHelper, TimeHelper
from utils.logger import get_logger


logger = get_logger("Server")


SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class PingMasterServer:
    """
    aiohttp application serving health diagnostics and push streams.

    Attributes
    ----------
    _app : aiohttp.web.Application
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    _start_time : float          - epoch seconds when the server started
    _request_count : int         - total requests served
    """

    def __init__(
        self,
        broadcaster: PushBroadcaster,
        stats_provider: Optional[Callable[[], Dict[str, Any]]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.broadcaster = broadcaster
        self._stats_provider = stats_provider
        self._host = self.settings.web_host
        self._port = self.settings.web_port

        self._app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_time: float = 0.0
        self._request_count: int = 0

        self._app.router.add_get("/", self._handle_root)
        self._app.router.add_get("/health", self._handle_health)
        self._app.router.add_get("/notifications/stream", self._handle_stream)

    @property
    def app(self) -> web.Application:
        return self._app

    async def start(self) -> None:
        """Bind and start serving."""
        self._start_time = time.time()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(f"[Server] ✓ Listening on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("[Server] ✓ Stopped")

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_root(self, request: web.Request) -> web.Response:
        """GET /: simple liveness probe."""
        self._request_count += 1
        return web.Response(text="OK", status=200)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health: engine diagnostics."""
        self._request_count += 1
        uptime_seconds = time.time() - self._start_time if self._start_time else 0

        health: Dict[str, Any] = {
            "status": "healthy",
            "app_name": self.settings.app_name,
            "app_version": self.settings.app_version,
            "uptime_seconds": round(uptime_seconds, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(uptime_seconds),
            "requests_served": self._request_count,
            "push_connections": self.broadcaster.connection_count(),
            "memory_mb": ProcessHelper.get_memory_usage(),
            "timestamp": TimeHelper.to_iso(TimeHelper.utc_now()),
        }
        if self._stats_provider is not None:
            health.update(self._stats_provider())

        return web.json_response(health, status=200)

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """GET /notifications/stream: SSE feed for one user."""
        self._request_count += 1
        try:
            user_id = int(request.query["user_id"])
        except (KeyError, ValueError):
            raise web.HTTPBadRequest(text="user_id query parameter is required")

        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)

        stream = self.broadcaster.connect(user_id)
        try:
            while True:
                frame = await stream.next_frame()
                if frame is None:
                    break
                await response.write(frame.encode("utf-8"))
        except ConnectionResetError:
            logger.debug(f"[Server] Stream {stream.id} of user {user_id} reset by client")
        finally:
            self.broadcaster.disconnect(stream)

        return response
