"""aiohttp server for groupcal."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional

from aiohttp import web

from ..calendar.service import CalendarEventsService
from ..core.config_manager import FeedSettings
from ..core.http_client import close_all_clients
from ..core.logging_setup import configure_logging
from ..middleware.correlation_id import correlation_id_middleware
from .routes import SERVICE_KEY, register_calendar_routes

logger = logging.getLogger(__name__)


def make_app(
    settings: Optional[FeedSettings] = None,
    service: Optional[CalendarEventsService] = None,
) -> web.Application:
    """Create the aiohttp application.

    Args:
        settings: Settings used to build the service when none is given
        service: Pre-built service (tests inject one with a fake fetcher)

    Returns:
        Configured web.Application
    """
    app = web.Application(middlewares=[correlation_id_middleware])
    app[SERVICE_KEY] = service or CalendarEventsService(settings or FeedSettings())
    register_calendar_routes(app)

    async def _close_http_clients(_app: web.Application) -> None:
        await close_all_clients()

    app.on_cleanup.append(_close_http_clients)
    return app


async def _serve(settings: FeedSettings, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the server until ``stop_event`` is set or a signal arrives."""
    stop_event = stop_event or asyncio.Event()
    app = make_app(settings)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=settings.server_bind, port=settings.server_port)
    try:
        await site.start()
    except OSError:
        logger.exception(
            "Failed to start server on %s:%d", settings.server_bind, settings.server_port
        )
        await runner.cleanup()
        raise

    logger.info(
        "Serving calendar events on http://%s:%d (feed=%s, tz=%s)",
        settings.server_bind,
        settings.server_port,
        app[SERVICE_KEY].feed_url,
        settings.timezone,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows)
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down server")
        await runner.cleanup()


def start_server(settings: FeedSettings) -> None:
    """Configure logging and run the server, blocking until stopped."""
    configure_logging(debug_mode=settings.debug_logging)
    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    logger.info("Server shutdown complete")
