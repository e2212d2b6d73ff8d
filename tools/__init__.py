"""HTTP and text utilities shared by the source adapters.

fetch_with_retry:
    One HTTP call with 429/503 and 5xx retry budgets, Retry-After support,
    exponential backoff, and an optional throttle.

open_session:
    aiohttp session with certifi SSL and the scanner User-Agent.

html_to_text / truncate:
    Normalize provider snippets before they reach the models.

Example:
    >>> from tools import fetch_with_retry, open_session
    >>> async with open_session() as session:
    ...     resp = await fetch_with_retry(session, "https://clinicaltrials.gov/api/v2/studies")
    ...     if resp.ok:
    ...         data = resp.json()
"""

from tools.retry import HttpResponse, fetch_with_retry, parse_retry_after
from tools.text import collapse_whitespace, html_to_text, truncate
from tools.utils import USER_AGENT, create_ssl_context, open_session

__all__ = [
    "HttpResponse",
    "fetch_with_retry",
    "parse_retry_after",
    "collapse_whitespace",
    "html_to_text",
    "truncate",
    "USER_AGENT",
    "create_ssl_context",
    "open_session",
]
