"""Observability: run-scoped logging and optional Logfire tracing.

setup_logging / set_run_context / set_source_context / clear_context:
    Console + rotating file logging with the scan run id on every line.

setup_tracing / trace_operation / ScanTracer:
    Logfire spans around scan stages and per-run funnel statistics.

Enable tracing via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional
"""

from observability.logging import (
    clear_context,
    set_run_context,
    set_source_context,
    setup_logging,
)
from observability.tracing import ScanTracer, TracingContext, setup_tracing, trace_operation

__all__ = [
    "clear_context",
    "set_run_context",
    "set_source_context",
    "setup_logging",
    "ScanTracer",
    "TracingContext",
    "setup_tracing",
    "trace_operation",
]
