"""
P1 Exporter - Metrics Server

aiohttp server answering every request, whatever the path or method, with
the current metrics encoded as OpenMetrics text.
"""

from typing import Optional

import structlog
from aiohttp import web
from prometheus_client.openmetrics.exposition import generate_latest
from prometheus_client.registry import CollectorRegistry

logger = structlog.get_logger(__name__)

CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"


class MetricsServer:
    """HTTP server for metrics scrapes."""

    def __init__(self, registry: CollectorRegistry, host: str = "127.0.0.1", port: int = 4545):
        self.host = host
        self.port = port
        self._registry = registry
        self._runner: Optional[web.AppRunner] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def build_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle_scrape)
        return app

    async def start(self) -> None:
        """Start listening for scrapes."""
        if self._running:
            logger.warning("Metrics server already running")
            return

        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        self._running = True
        logger.info("Metrics server started", address=f"http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        self._running = False
        logger.info("Metrics server stopped")

    async def handle_scrape(self, request: web.Request) -> web.StreamResponse:
        """Encode a fresh snapshot of the registry."""
        try:
            body = generate_latest(self._registry)
        except Exception as e:
            logger.exception("Error encoding metrics", path=request.path, error=str(e))
            return web.Response(status=500, text=str(e) or e.__class__.__name__)

        response = web.StreamResponse(status=200, headers={"Content-Type": CONTENT_TYPE})
        response.content_length = len(body)
        try:
            await response.prepare(request)
            await response.write(body)
            await response.write_eof()
        except ConnectionError as e:
            logger.warning("Failed to respond", peer=request.remote, error=str(e))

        return response
