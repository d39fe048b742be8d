"""groupcal - calendar window service for a public iCalendar feed.

Fetches a group calendar feed, expands recurring events and serves the items
that fall inside a date-key window, most relevant first. Imports are kept
light so the package can be inspected without starting the server stack.
"""

__version__ = "0.1.0"

from typing import Any, Optional


def _load_settings(args: Optional[object] = None) -> Any:
    """Build FeedSettings from .env, the environment and CLI overrides."""
    from .core.config_manager import ConfigManager

    overrides: dict[str, Any] = {}
    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            overrides["server_port"] = port
        if getattr(args, "debug", False):
            overrides["debug_logging"] = True
    return ConfigManager().load_settings(overrides)


async def dump_window(
    settings: Any, start_date_key: Optional[str] = None, end_date_key: Optional[str] = None
) -> dict:
    """Resolve one window against the live feed and return the JSON payload."""
    from .calendar.service import CalendarEventsService
    from .core.http_client import close_all_clients

    service = CalendarEventsService(settings)
    try:
        result = await service.get_calendar_events_window(start_date_key, end_date_key)
    finally:
        await close_all_clients()
    return result.to_json_dict()


def run_server(args: Optional[object] = None) -> None:
    """Start the groupcal server, or print one window when ``--dump`` is given.

    Args:
        args: Optional parsed CLI namespace (port, debug, dump, start, end)
    """
    import asyncio
    import json
    import logging

    from .core.logging_setup import configure_logging

    settings = _load_settings(args)
    configure_logging(debug_mode=settings.debug_logging)
    logger = logging.getLogger(__name__)

    if getattr(args, "dump", False):
        start = getattr(args, "start", None)
        end = getattr(args, "end", None)
        logger.info("Dumping calendar window start=%s end=%s", start, end)
        payload = asyncio.run(dump_window(settings, start, end))
        print(json.dumps(payload, indent=2))
        return

    from .api.server import start_server

    start_server(settings)
