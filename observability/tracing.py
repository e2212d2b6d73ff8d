"""Optional Logfire tracing.

When ENABLE_LOGFIRE is set, scan stages run inside Logfire spans and every
pydantic-ai agent call is instrumented. Otherwise `trace_operation` is a
timing no-op.

Requirements:
    pip install logfire

Usage:
    >>> from observability.tracing import setup_tracing, trace_operation
    >>> setup_tracing(enabled=True, service_name="compass")
    >>> with trace_operation("source", {"source": "pubmed"}) as span:
    ...     span["items"] = 12
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = "compass"
    token: str = ""
    _logfire_configured: bool = field(default=False, init=False)


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "compass",
    token: str = "",
) -> TracingContext:
    """Configure Logfire and instrument pydantic-ai.

    A missing logfire package or a configuration failure disables tracing
    with a log message; it never stops the caller.
    """
    _context.enabled = enabled
    _context.service_name = service_name
    _context.token = token

    if not enabled:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)
    except ImportError:
        logger.warning("Logfire not installed, tracing disabled")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire: %s", e)
        _context.enabled = False

    return _context


@contextmanager
def trace_operation(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Run a block inside a span.

    Yields:
        Dict whose entries are attached to the span when the block ends
    """
    start = time.monotonic()
    result_attrs: dict[str, Any] = {}
    try:
        if _context.enabled and _context._logfire_configured:
            import logfire

            with logfire.span(name, **(attributes or {})) as span:
                yield result_attrs
                for key, value in result_attrs.items():
                    span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Operation '%s' completed in %.2fs", name, time.monotonic() - start)


class ScanTracer:
    """Collects per-stage statistics for one scan run."""

    def __init__(self, scan_run_id: str):
        self.scan_run_id = scan_run_id
        self._start = time.monotonic()
        self.stats: dict[str, Any] = {"scan_run_id": scan_run_id, "sources": {}}

    def record_source(
        self,
        source: str,
        candidates: int,
        kept: int,
        new: int,
        error: str | None = None,
    ) -> None:
        """Record one source's funnel: candidates -> relevant -> new."""
        self.stats["sources"][source] = {
            "candidates": candidates,
            "kept": kept,
            "new": new,
            "failed": bool(error),
        }

    def record_digest(self, digest_run_id: str | None, suppressed: bool) -> None:
        self.stats["digest_run_id"] = digest_run_id
        self.stats["digest_suppressed"] = suppressed

    def get_summary(self) -> dict[str, Any]:
        summary = dict(self.stats)
        sources = summary["sources"].values()
        summary["candidates"] = sum(s["candidates"] for s in sources)
        summary["new"] = sum(s["new"] for s in sources)
        summary["failed_sources"] = sorted(k for k, v in summary["sources"].items() if v["failed"])
        summary["duration_seconds"] = round(time.monotonic() - self._start, 2)
        return summary
