"""HTTP routes for groupcal."""

from __future__ import annotations

import logging

from aiohttp import web

from ..calendar.service import CalendarEventsService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("calendar_service", CalendarEventsService)


def register_calendar_routes(app: web.Application) -> None:
    """Register the calendar and health routes.

    The service is read from ``app[SERVICE_KEY]`` at request time.
    """

    async def calendar_events(request: web.Request) -> web.Response:
        """Return calendar items for ``startDate``/``endDate`` (both optional)."""
        service = request.app[SERVICE_KEY]
        start = request.query.get("startDate")
        end = request.query.get("endDate")

        result = await service.get_calendar_events_window(start, end)
        logger.debug(
            "/api/calendar-events %s..%s -> %d items",
            result.range_start_date_key,
            result.range_end_date_key,
            len(result.items),
        )
        return web.json_response(result.to_json_dict())

    async def health_check(request: web.Request) -> web.Response:
        service = request.app[SERVICE_KEY]
        return web.json_response(
            {
                "status": "ok",
                "timezone": service.timezone,
                "cache": service.cache.get_stats(),
            }
        )

    app.router.add_get("/api/calendar-events", calendar_events)
    app.router.add_get("/api/health", health_check)
