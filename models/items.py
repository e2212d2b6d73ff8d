"""Candidate and raw item models.

CandidateItem is what every source adapter returns. Once it survives the
relevance filter and is ingested, it becomes a RawItem, keyed globally by
(source, external_id).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CandidateItem(BaseModel):
    """One piece of evidence retrieved from a source.

    Attributes:
        target_id: Watch target the item was attributed to
        external_id: Provider identifier (PMID, NCT id, accession number, ...)
        title: Item title
        url: Canonical human-facing URL
        abstract: Summary text, if the provider returned one
        full_text: Longer text excerpt, if any
        published_at: Publication timestamp (UTC) when known
        metadata: Provider-specific fields (pubdate, startDate, form, ...)
    """

    target_id: str
    external_id: str
    title: str
    url: str = ""
    abstract: str = ""
    full_text: str = ""
    published_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def snippet_source(self) -> str:
        """Abstract, falling back to the full text."""
        return self.abstract or self.full_text


class SourceResult(BaseModel):
    """Output contract shared by every adapter.

    A non-empty error alongside items means partial success.
    """

    items: list[CandidateItem] = Field(default_factory=list)
    error: str | None = None


class RawItem(CandidateItem):
    """A persisted candidate item."""

    id: str
    scan_run_id: str
    source: str
    is_new: bool = True
    feedback: str | None = None
    created_at: int = 0
