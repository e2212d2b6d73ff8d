"""Exception types shared across the scan pipeline.

ConfigurationError:
    A capability is missing its credential. Adapters treat this as a no-op.

TransientNetworkError:
    Upstream kept answering 429/5xx or timing out after the retry budget.
    Surfaced as a per-source error string, never as a run failure.

AuthorizationError:
    The trigger request carried neither the shared secret nor a same-origin
    marker. Rejected before any side effect.

InvalidScanRequest:
    Malformed request body, period, or source list.
"""


class CompassError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(CompassError):
    """Required setting or credential is missing."""


class TransientNetworkError(CompassError):
    """Upstream service failed after exhausting retries."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthorizationError(CompassError):
    """Caller is not allowed to trigger scans."""


class InvalidScanRequest(CompassError):
    """Scan request failed validation."""
