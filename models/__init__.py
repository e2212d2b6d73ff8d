"""Pydantic models for the Compass scan pipeline.

WatchTarget:
    Entity under watch (drug, biological target, company) with its
    monitoring goal.

CandidateItem / SourceResult / RawItem:
    Adapter output contract and its persisted form.

ScanRun / SourceStatus / ScanRequest / ScanResult:
    Run bookkeeping and the orchestrator's call/return shapes.

DigestDraft / DigestRun / DigestItem:
    Synthesized reports before and after persistence.

Schedule:
    Per-user or per-target scan cadence with last-run markers.

Example:
    >>> from models import WatchTarget, Period
    >>> target = WatchTarget(name="semaglutide", notes="trial discontinuations only")
"""

from models.scan import (
    Period,
    RunStatus,
    ScanMode,
    ScanRequest,
    ScanResult,
    ScanRun,
    SourceState,
    SourceStatus,
    new_id,
)
from models.target import TargetType, WatchTarget
from models.items import CandidateItem, RawItem, SourceResult
from models.digest import (
    Category,
    DigestDraft,
    DigestItem,
    DigestItemDraft,
    DigestRun,
    Feedback,
    FeedbackExample,
    FeedbackSet,
    Significance,
    SourceRef,
)
from models.schedule import Schedule

__all__ = [
    "Period",
    "RunStatus",
    "ScanMode",
    "ScanRequest",
    "ScanResult",
    "ScanRun",
    "SourceState",
    "SourceStatus",
    "new_id",
    "TargetType",
    "WatchTarget",
    "CandidateItem",
    "RawItem",
    "SourceResult",
    "Category",
    "DigestDraft",
    "DigestItem",
    "DigestItemDraft",
    "DigestRun",
    "Feedback",
    "FeedbackExample",
    "FeedbackSet",
    "Significance",
    "SourceRef",
    "Schedule",
]
