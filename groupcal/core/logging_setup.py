"""
Central logging configuration for groupcal.

Installs one console handler with a colorized format, stamps every record
with the current request's correlation ID and quiets chatty third-party
loggers.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

from ..middleware.correlation_id import get_request_id

CONSOLE_FORMAT = (
    "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s [%(request_id)s] %(name)s: %(message)s"
)

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Third-party loggers that are too verbose at DEBUG
NOISY_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}


class CorrelationIdFilter(logging.Filter):
    """Add the request correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def _env_debug() -> bool:
    return os.getenv("GROUPCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging for groupcal.

    Args:
        debug_mode: Whether to enable debug logging for groupcal modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        GROUPCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        GROUPCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or _env_debug()

    root_level = logging.DEBUG if final_debug else logging.INFO
    env_log_level = os.getenv("GROUPCAL_LOG_LEVEL", "").strip().upper()
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    correlation_filter = CorrelationIdFilter()

    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            ColoredFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS)
        )
        root_logger.addHandler(handler)

    for existing_handler in root_logger.handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
            existing_handler.addFilter(correlation_filter)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger("groupcal").setLevel(logging.DEBUG if final_debug else root_level)

    root_logger.debug("Logging configured (debug=%s, level=%s)", final_debug, logging.getLevelName(root_level))
