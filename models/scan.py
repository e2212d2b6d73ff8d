"""Scan run models: periods, modes, run and per-source status records.

A ScanRun is created once per orchestrator invocation and patched as its
sources complete. SourceStatus rows are independent per source, so one
failing provider never blocks the others.
"""

import uuid
from enum import Enum

from pydantic import BaseModel, Field


def new_id() -> str:
    """Generate a new opaque record id."""
    return uuid.uuid4().hex


class Period(str, Enum):
    """Digest cadence a scan belongs to."""
    DAILY = "daily"
    WEEKLY = "weekly"


class ScanMode(str, Enum):
    """Search depth requested from each adapter."""
    LATEST = "latest"                # Recent, focused results
    COMPREHENSIVE = "comprehensive"  # Deeper result counts, every search term


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScanRun(BaseModel):
    """One pipeline invocation."""

    id: str = Field(default_factory=new_id)
    period: Period
    status: RunStatus = RunStatus.PENDING
    mode: ScanMode = ScanMode.LATEST
    target_ids: list[str] = Field(default_factory=list)
    sources_total: int = 0
    sources_completed: int = 0
    items_found: int = 0
    new_found: int = 0
    error: str | None = None
    created_at: int = 0
    completed_at: int | None = None


class SourceStatus(BaseModel):
    """Progress of a single source within a scan run."""

    scan_run_id: str
    source: str
    status: SourceState = SourceState.PENDING
    items_found: int = 0
    error: str | None = None
    updated_at: int = 0


class ScanRequest(BaseModel):
    """Arguments for one orchestrator run.

    Produced by the scheduler and by the trigger endpoint.

    Attributes:
        period: Digest cadence (daily or weekly)
        target_ids: Explicit targets, or None for every active target
        user_id: With target_ids None, restricts "every active target" to one user
        mode: Search depth
        sources: Source subset, or None for every registered source
        scan_run_id: Pre-created run to resume instead of creating one
    """

    period: Period
    target_ids: list[str] | None = None
    user_id: str | None = None
    mode: ScanMode = ScanMode.LATEST
    sources: list[str] | None = None
    scan_run_id: str | None = None


class ScanResult(BaseModel):
    """Outcome reported to the caller of an orchestrator run."""

    scan_run_id: str
    total_found: int = 0
    new_found: int = 0
    failed_sources: list[str] = Field(default_factory=list)
    digest_run_id: str | None = None
    message: str | None = None
