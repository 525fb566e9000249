from __future__ import annotations

import asyncio
from typing import Tuple

import httpx

from server.src.core.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def endpoint_host_port(endpoint: str) -> Tuple[str, int]:
    """Return (host, port) for a node URL, using the scheme's port when none is given."""
    url = httpx.URL(endpoint)
    host = url.host
    if not host:
        raise ValueError(f"Endpoint '{endpoint}' has no host")
    port = url.port or _DEFAULT_PORTS.get(url.scheme)
    if port is None:
        raise ValueError(f"Endpoint '{endpoint}' has no port and an unknown scheme")
    return host, port


class AvailabilityProber:
    """Bounded TCP connect checks against node endpoints. Never raises, never retries."""

    def __init__(self, timeout: float = 3.0) -> None:
        self._timeout = timeout

    async def is_reachable(self, endpoint: str) -> bool:
        try:
            host, port = endpoint_host_port(endpoint)
        except (ValueError, httpx.InvalidURL) as exc:
            logger.warning("Cannot probe endpoint '%s': %s", endpoint, exc)
            return False

        logger.debug("Performing a port check for %s:%s", host, port)
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("Host %s:%s unavailable: %s", host, port, exc or type(exc).__name__)
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            logger.debug("Error closing probe connection to %s:%s", host, port, exc_info=True)
        logger.debug("Host %s:%s is available", host, port)
        return True

    async def probe(self, mainchain: str, sidechain: str) -> Tuple[bool, bool]:
        """Check both nodes concurrently and return (mainchain_up, sidechain_up)."""
        mainchain_up, sidechain_up = await asyncio.gather(
            self.is_reachable(mainchain),
            self.is_reachable(sidechain),
        )
        return mainchain_up, sidechain_up
