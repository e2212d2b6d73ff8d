"""Shared HTTP helpers for source adapters.

Every adapter opens its own aiohttp session through open_session(), so
adapters running in parallel share no connection state.
"""

import ssl

import aiohttp
import certifi

# Identifies the scanner to upstream APIs (NCBI and SEC ask for one)
USER_AGENT = "CompassScan/1.0 (+biopharma watch-target monitor)"


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with optional certificate verification.

    Args:
        verify: If True, verify SSL certificates using certifi bundle.
                If False, disable verification (for problematic feed hosts).

    Returns:
        Configured SSL context
    """
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def open_session(
    headers: dict[str, str] | None = None,
    max_connections: int = 8,
) -> aiohttp.ClientSession:
    """Create a client session with certifi SSL and the scanner User-Agent.

    Args:
        headers: Extra default headers (merged over the User-Agent)
        max_connections: Connection pool size

    Returns:
        Unopened aiohttp session; use as an async context manager
    """
    connector = aiohttp.TCPConnector(limit=max_connections, ssl=create_ssl_context())
    return aiohttp.ClientSession(
        connector=connector,
        headers={"User-Agent": USER_AGENT, **(headers or {})},
    )
