"""Retry/throttle wrapper for outbound HTTP calls.

Every source adapter sends its requests through fetch_with_retry().

Policy:
    - Optional throttle sleep before the first attempt
    - 429/503: up to `retries_429_503` retries (default 3)
    - Other 5xx: up to `retries_5xx` retries (default 1)
    - Delay: Retry-After seconds when present (capped at 60s), otherwise
      exponential backoff from `initial_backoff` (2s, 4s, 8s, ...)
    - Timeouts and connection errors count against the 5xx budget
    - 2xx, any other status, or an exhausted budget: the last response is
      returned unchanged and the caller decides what the status means

Only when the final attempt raised (timeout/connection error) is there no
response to return; TransientNetworkError is raised instead.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import aiohttp

from errors import TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES_429_503 = 3
DEFAULT_RETRIES_5XX = 1
DEFAULT_INITIAL_BACKOFF = 2.0  # seconds, doubled per attempt
MAX_RETRY_AFTER = 60.0  # seconds
DEFAULT_TIMEOUT = 30.0  # seconds per attempt

RATE_LIMIT_STATUSES = frozenset({429, 503})

_LEADING_INT = re.compile(r"\s*(-?\d+)")

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class HttpResponse:
    """Fully-read HTTP response.

    Attributes:
        status: HTTP status code
        headers: Response headers with lowercase names
        body: Raw response body
        url: Final request URL
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def retryable(self) -> bool:
        """True for statuses the retry policy treats as transient."""
        return self.status in RATE_LIMIT_STATUSES or 500 <= self.status < 600

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.body)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds.

    Values above 60 are capped at 60. Non-numeric values (HTTP dates)
    yield None so the caller falls back to exponential backoff.
    """
    if not value:
        return None
    match = _LEADING_INT.match(value)
    if not match:
        return None
    seconds = int(match.group(1))
    return float(min(max(seconds, 0), MAX_RETRY_AFTER))


def backoff_delay(attempt: int, initial: float = DEFAULT_INITIAL_BACKOFF) -> float:
    """Exponential backoff for a zero-based attempt index."""
    return initial * (2 ** attempt)


async def _send(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> HttpResponse:
    """Perform one request and read the whole body."""
    async with session.request(
        method,
        url,
        timeout=aiohttp.ClientTimeout(total=timeout),
        **kwargs,
    ) as resp:
        body = await resp.read()
        return HttpResponse(
            status=resp.status,
            headers={k.lower(): v for k, v in resp.headers.items()},
            body=body,
            url=str(resp.url),
        )


async def fetch_with_retry(
    session: aiohttp.ClientSession,
    url: str,
    *,
    method: str = "GET",
    retries_429_503: int = DEFAULT_RETRIES_429_503,
    retries_5xx: int = DEFAULT_RETRIES_5XX,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    throttle: float = 0.0,
    timeout: float = DEFAULT_TIMEOUT,
    sleep: Sleeper = asyncio.sleep,
    **kwargs: Any,
) -> HttpResponse:
    """Send one HTTP request with bounded retries.

    Args:
        session: aiohttp client session
        url: Request URL
        method: HTTP method
        retries_429_503: Retry budget for 429/503 responses
        retries_5xx: Retry budget for other 5xx responses and timeouts
        initial_backoff: First backoff delay in seconds
        throttle: Seconds to wait before the first attempt
        timeout: Per-attempt timeout in seconds
        sleep: Awaitable sleep function (injectable for tests)
        **kwargs: Passed to session.request (params, json, headers, ...)

    Returns:
        The first 2xx response, or the last response once retries are exhausted

    Raises:
        TransientNetworkError: If the final attempt timed out or failed to connect
    """
    if throttle > 0:
        await sleep(throttle)

    last: HttpResponse | None = None
    attempts = max(retries_429_503, retries_5xx) + 1
    for attempt in range(attempts):
        try:
            last = await _send(session, method, url, timeout, **kwargs)
        except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
            if attempt < retries_5xx:
                delay = backoff_delay(attempt, initial_backoff)
                logger.debug(
                    "Request failed, retrying | url=%s attempt=%d error=%s delay=%.1fs",
                    url, attempt + 1, type(e).__name__, delay,
                )
                await sleep(delay)
                continue
            raise TransientNetworkError(
                f"{method} {url} failed after {attempt + 1} attempt(s): {type(e).__name__}"
            ) from e

        if last.ok:
            return last

        rate_limited = last.status in RATE_LIMIT_STATUSES
        server_error = 500 <= last.status < 600 and not rate_limited
        should_retry = (rate_limited and attempt < retries_429_503) or (
            server_error and attempt < retries_5xx
        )
        if not should_retry:
            break

        delay = parse_retry_after(last.header("Retry-After"))
        if delay is None:
            delay = backoff_delay(attempt, initial_backoff)
        logger.debug(
            "Retrying request | url=%s status=%d attempt=%d delay=%.1fs",
            url, last.status, attempt + 1, delay,
        )
        await sleep(delay)

    if last is not None and not last.ok:
        logger.debug("Giving up on request | url=%s status=%d", url, last.status)
    return last
