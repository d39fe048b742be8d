"""Shared HTTP client manager for upstream feed fetches.

Keeps one pooled ``httpx.AsyncClient`` per client ID so that every
cache miss does not pay for a fresh TLS handshake.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(
    max_connections=10,
    max_keepalive_connections=5,
)

DEFAULT_TIMEOUT = httpx.Timeout(
    connect=5.0,
    read=10.0,
    write=5.0,
    pool=10.0,
)

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "groupcal/0.1 (+calendar feed reader)",
    "Accept": "text/calendar, text/plain, */*",
    "Cache-Control": "no-cache",
}


def build_timeout(request_timeout: float) -> httpx.Timeout:
    """Timeout with the read/pool phases bounded by ``request_timeout`` seconds."""
    return httpx.Timeout(
        connect=min(DEFAULT_TIMEOUT.connect or request_timeout, request_timeout),
        read=request_timeout,
        write=DEFAULT_TIMEOUT.write,
        pool=request_timeout,
    )


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        limits: Custom connection limits
        timeout: Custom timeout configuration

    Returns:
        Shared httpx.AsyncClient

    Raises:
        RuntimeError: If client creation fails
    """
    async with _client_lock:
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            try:
                client = httpx.AsyncClient(
                    limits=limits or DEFAULT_LIMITS,
                    timeout=timeout or DEFAULT_TIMEOUT,
                    follow_redirects=True,
                    verify=True,
                    headers=DEFAULT_HEADERS,
                )
            except Exception as e:
                logger.exception("Failed to create shared HTTP client '%s'", client_id)
                raise RuntimeError(f"Failed to create shared HTTP client: {e}") from e
            _shared_clients[client_id] = client
            logger.info("Created shared HTTP client '%s'", client_id)
        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients.

    Called during application shutdown and between tests.
    """
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except Exception as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)
        _shared_clients.clear()
