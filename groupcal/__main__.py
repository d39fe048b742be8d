"""Command-line entry for groupcal."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the groupcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="groupcal",
        description="groupcal - calendar window service for a public iCalendar feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m groupcal                                  # Serve on default port (8080)
  python -m groupcal --port 3000                      # Serve on port 3000
  python -m groupcal --dump                           # Print today's window as JSON
  python -m groupcal --dump --start 2024-03-01 --end 2024-03-31
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or from GROUPCAL_WEB_PORT env var)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Resolve one window, print it as JSON and exit instead of serving",
    )
    parser.add_argument(
        "--start",
        metavar="YYYY-MM-DD",
        help="Window start date key for --dump (default: today minus past days)",
    )
    parser.add_argument(
        "--end",
        metavar="YYYY-MM-DD",
        help="Window end date key for --dump (default: today plus future days)",
    )

    return parser


def main() -> NoReturn:
    """Run the groupcal CLI."""
    parser = _create_parser()
    args = parser.parse_args()

    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(0)


if __name__ == "__main__":
    main()
