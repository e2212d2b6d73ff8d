"""Watch target model.

A watch target is an entity (drug, biological target, or company) a user
wants monitored. Every pipeline stage reads it: adapters build queries from
its search terms, the relevance filter and the digest use its monitoring goal.
"""

from enum import Enum

from pydantic import BaseModel, Field

from models.scan import new_id


DEFAULT_USER_ID = "default"


class TargetType(str, Enum):
    DRUG = "drug"
    TARGET = "target"
    COMPANY = "company"


class WatchTarget(BaseModel):
    """An entity under watch.

    Attributes:
        name: Canonical name used in queries (e.g. "semaglutide")
        display_name: Human-facing label (e.g. "Ozempic")
        aliases: Alternative names, codes, or tickers
        notes: Free-text monitoring goal ("trial discontinuations only")
        active: Inactive targets are skipped by "all active" scans
    """

    id: str = Field(default_factory=new_id)
    user_id: str = DEFAULT_USER_ID
    name: str = Field(description="Canonical name")
    display_name: str = Field(default="", description="Human-facing label")
    aliases: list[str] = Field(default_factory=list)
    type: TargetType = TargetType.DRUG
    therapeutic_area: str = "other"
    indication: str = ""
    company: str = ""
    notes: str = Field(default="", description="Free-text monitoring goal")
    active: bool = True
    created_at: int = 0

    @property
    def label(self) -> str:
        """Display name, falling back to the canonical name."""
        return self.display_name or self.name

    @property
    def search_terms(self) -> list[str]:
        """Name, display name, and aliases, deduplicated in order."""
        seen: set[str] = set()
        terms = []
        for term in (self.name, self.display_name, *self.aliases):
            term = term.strip()
            if term and term.lower() not in seen:
                seen.add(term.lower())
                terms.append(term)
        return terms

    @property
    def monitoring_goal(self) -> str:
        """The user's free-text goal, or a generic default."""
        return self.notes.strip() or (
            f"general updates about {self.label} (trials, filings, pipeline, news)"
        )
