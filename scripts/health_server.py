"""
Health check HTTP endpoint for the game engine host.

GET /health returns uptime plus whatever the host's status provider
reports (speed, pending timers, active operations, ...). If the provider
raises, the endpoint still answers, with status "degraded".
"""

import logging
import time
from typing import Any, Callable

from aiohttp import web

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], dict[str, Any]]


class HealthServer:
    """aiohttp server exposing engine status for container checks and dashboards."""

    def __init__(
        self,
        port: int = 8766,
        status_provider: StatusProvider | None = None,
        host: str = "0.0.0.0",
    ):
        self._host = host
        self._port = port
        self._status_provider = status_provider or (lambda: {})
        self._started_at = time.monotonic()
        self._runner: web.AppRunner | None = None

        self._app = web.Application()
        self._app.router.add_get("/health", self._handle_health)

    @property
    def app(self) -> web.Application:
        return self._app

    def snapshot(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "running",
            "uptime_seconds": int(time.monotonic() - self._started_at),
        }
        try:
            payload.update(self._status_provider())
        except Exception as e:
            logger.warning(f"Health status provider failed: {e}")
            payload["status"] = "degraded"
        return payload

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        await web.TCPSite(self._runner, self._host, self._port).start()
        logger.info(f"Health server on http://{self._host}:{self._port}/health")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(self.snapshot())
