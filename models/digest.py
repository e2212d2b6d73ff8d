"""Digest models: persisted reports, their items, and generated output.

Category Design:
    Each digest item falls into one of six categories. Deterministic digests
    derive it from the item's source; generated digests let the model pick,
    and unknown values are normalized to NEWS.

Significance:
    CRITICAL > HIGH > MEDIUM > LOW. Per-significance counts are stored on
    the DigestRun so history views do not need to load every item.
"""

import logging
from enum import Enum

from pydantic import BaseModel, Field

from models.scan import Period

logger = logging.getLogger(__name__)


class Category(str, Enum):
    """Digest item categories."""
    TRIAL_UPDATE = "trial_update"
    PUBLICATION = "publication"
    REGULATORY = "regulatory"
    FILING = "filing"
    NEWS = "news"
    CONFERENCE = "conference"


class Significance(str, Enum):
    """Digest item significance levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Feedback(str, Enum):
    GOOD = "good"
    BAD = "bad"


def normalize_category(value: str | Category | None) -> Category:
    """Map a raw category value onto Category, defaulting to NEWS."""
    if isinstance(value, Category):
        return value
    raw = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return Category(raw)
    except ValueError:
        if raw:
            logger.debug("Unknown category '%s', using news", value)
        return Category.NEWS


def normalize_significance(value: str | Significance | None) -> Significance:
    """Map a raw significance value onto Significance, defaulting to LOW."""
    if isinstance(value, Significance):
        return value
    raw = str(value or "").strip().lower()
    try:
        return Significance(raw)
    except ValueError:
        return Significance.LOW


class SourceRef(BaseModel):
    """Human-facing reference to one contributing raw item."""

    title: str
    url: str = ""
    source: str
    date: str | None = None


class DigestItemDraft(BaseModel):
    """A digest entry before persistence."""

    target_id: str
    raw_item_ids: list[str] = Field(min_length=1)
    category: Category = Category.NEWS
    significance: Significance = Significance.MEDIUM
    headline: str
    synthesis: str
    strategic_implication: str | None = None
    sources: list[SourceRef] = Field(default_factory=list)


class DigestDraft(BaseModel):
    """A complete digest before fingerprinting and persistence."""

    executive_summary: str
    items: list[DigestItemDraft] = Field(default_factory=list)
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    strategy: str = "deterministic"

    @property
    def raw_item_ids(self) -> list[str]:
        """Every contributing raw item id across all entries."""
        return [rid for item in self.items for rid in item.raw_item_ids]


class DigestRun(BaseModel):
    """A persisted digest report."""

    id: str
    scan_run_id: str | None = None
    period: Period
    executive_summary: str
    total_signals: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    fingerprint: str | None = None
    strategy: str = "deterministic"
    generated_at: int = 0


class DigestItem(DigestItemDraft):
    """A persisted digest entry."""

    id: str
    digest_run_id: str
    feedback: Feedback | None = None


class FeedbackExample(BaseModel):
    """A rated item shown to the models to bias retrieval and synthesis."""

    target_name: str = ""
    headline: str
    snippet: str = ""


class FeedbackSet(BaseModel):
    """Thumbs-up and thumbs-down examples."""

    good: list[FeedbackExample] = Field(default_factory=list)
    bad: list[FeedbackExample] = Field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.good or self.bad)


# === Generated digest output ===

class GeneratedDigestItem(BaseModel):
    """One digest entry as emitted by the digest model."""

    target_name: str = Field(default="", description="Watch target display name")
    category: str = Field(
        default="news",
        description="trial_update | publication | regulatory | filing | news | conference",
    )
    significance: str = Field(default="low", description="critical | high | medium | low")
    headline: str = Field(default="", description="Short factual headline")
    synthesis: str = Field(default="", description="2-4 sentence synthesis of the grouped sources")
    strategic_implication: str | None = Field(
        default=None, description="Optional note on what this means for the user"
    )
    source_indices: list[int] = Field(
        default_factory=list, description="Indices into the provided source list"
    )


class GeneratedDigest(BaseModel):
    """Structured output of the digest model."""

    executive_summary: str = Field(default="", description="2-3 sentence overview")
    items: list[GeneratedDigestItem] = Field(default_factory=list)
