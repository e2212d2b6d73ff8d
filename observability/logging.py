"""Logging setup with scan-run context.

Every record carries the current scan run id and, inside a source task,
the source id. Both live in contextvars: asyncio copies the context into
each task, so concurrent sources never see each other's value.

Usage:
    >>> from observability.logging import setup_logging, set_run_context
    >>> setup_logging(config)
    >>> set_run_context("3f9c...")
    >>> logger.info("Scan started")  # [3f9c...] in every line
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

LOG_FILENAME = "compass.log"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")
source_var: contextvars.ContextVar[str] = contextvars.ContextVar("source", default="-")

_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "taskName", "run_id", "source", "message",
})


def set_run_context(run_id: str) -> None:
    """Tag subsequent log records with a scan run id."""
    run_id_var.set(run_id)


def set_source_context(source: str) -> None:
    """Tag subsequent log records (in this task) with a source id."""
    source_var.set(source)


def clear_context() -> None:
    run_id_var.set("-")
    source_var.set("-")


class ContextFilter(logging.Filter):
    """Injects run_id and source into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        record.source = source_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }
        source = getattr(record, "source", "-")
        if source != "-":
            data["source"] = source
        if record.levelno >= logging.WARNING:
            data["location"] = f"{record.filename}:{record.lineno}"
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = str(value)
        return json.dumps(data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """TIMESTAMP [LEVEL] [run_id] logger: message"""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(run_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )


def _file_handler(config: Any) -> logging.Handler:
    log_file = config.log_dir / LOG_FILENAME
    if config.log_max_bytes > 0:
        return RotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    return TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Install console and rotating file handlers on the root logger.

    Falls back to console-only logging when the log directory is not
    writable.

    Args:
        config: Application configuration (log_level, log_dir, log_format,
                log_max_bytes, log_backup_count)
        verbose: Force DEBUG on the console

    Returns:
        True if file logging is enabled
    """
    console_level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    context_filter = ContextFilter()
    use_json = config.log_format == "json"

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(JsonFormatter() if use_json else TextFormatter())
    console.addFilter(context_filter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(console)

    file_logging = False
    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        probe = config.log_dir / ".write_test"
        probe.touch()
        probe.unlink()

        handler = _file_handler(config)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(JsonFormatter() if use_json else TextFormatter(include_date=True))
        handler.addFilter(context_filter)
        root.addHandler(handler)
        file_logging = True
    except OSError as e:
        print(
            f"Warning: Cannot write to log directory '{config.log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )

    for lib in ("aiohttp", "httpx", "httpcore", "openai", "asyncio", "uvicorn.access"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return file_logging
