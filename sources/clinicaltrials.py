"""ClinicalTrials.gov adapter (API v2).

Studies are searched by free-text term. The procedural search issues one
query per target (every usable term in comprehensive mode) and keeps the
first occurrence of each NCT id.
"""

import logging
from datetime import datetime, timezone

import aiohttp
from pydantic_ai import RunContext

from agents.search import SearchDeps
from models.items import CandidateItem
from models.target import WatchTarget
from sources.base import (
    Collector,
    SourceAdapter,
    SourceContext,
    assign_target,
    guarded_tool,
    summarize_added,
)

logger = logging.getLogger(__name__)

STUDIES_URL = "https://clinicaltrials.gov/api/v2/studies"
STUDY_URL = "https://clinicaltrials.gov/study/{nct_id}"
MIN_TERM_LENGTH = 2


def _parse_partial_date(value: str) -> datetime | None:
    """Parse 'YYYY-MM-DD' or 'YYYY-MM' study dates."""
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            continue
    return None


def parse_studies(payload: dict) -> list[dict]:
    """Extract trial records from a /studies response."""
    records = []
    for study in payload.get("studies", []):
        protocol = study.get("protocolSection") or {}
        ident = protocol.get("identificationModule") or {}
        status = protocol.get("statusModule") or {}
        description = protocol.get("descriptionModule") or {}
        nct_id = ident.get("nctId")
        if not nct_id:
            continue
        records.append({
            "nct_id": nct_id,
            "title": ident.get("briefTitle") or ident.get("officialTitle") or nct_id,
            "start_date": (status.get("startDateStruct") or {}).get("date", ""),
            "overall_status": status.get("overallStatus", ""),
            "summary": description.get("briefSummary", ""),
        })
    return records


def query_terms(target: WatchTarget, comprehensive: bool) -> list[str]:
    """Usable query terms: the first one, or all in comprehensive mode."""
    terms = [t for t in target.search_terms if len(t) >= MIN_TERM_LENGTH]
    return terms if comprehensive else terms[:1]


class ClinicalTrialsAdapter(SourceAdapter):
    """Searches ClinicalTrials.gov for studies of each target."""

    source_id = "clinicaltrials"
    latest_limit = 15
    comprehensive_limit = 50
    instructions = (
        "Source: ClinicalTrials.gov. Use search_trials with a drug, target, or sponsor "
        "name; add a condition only when the monitoring goal names one."
    )

    async def search(
        self,
        session: aiohttp.ClientSession,
        term: str,
        page_size: int,
        condition: str | None = None,
    ) -> list[dict]:
        params = {"query.term": term, "pageSize": str(page_size), "format": "json"}
        if condition:
            params["query.cond"] = condition
        resp = await self.fetch(session, STUDIES_URL, params=params)
        if not resp.ok:
            return []
        return parse_studies(resp.json())

    @staticmethod
    def to_item(record: dict, target_id: str) -> CandidateItem:
        return CandidateItem(
            target_id=target_id,
            external_id=record["nct_id"],
            title=record["title"],
            url=STUDY_URL.format(nct_id=record["nct_id"]),
            abstract=record["summary"],
            published_at=_parse_partial_date(record["start_date"]),
            metadata={
                "startDate": record["start_date"],
                "overallStatus": record["overall_status"],
            },
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        for target in context.targets:
            for term in query_terms(target, context.comprehensive):
                records = await self.isolated(errors, self.search(session, term, self.limit(context)))
                for record in records:
                    collector.add(self.to_item(record, target.id))


async def search_trials(
    ctx: RunContext[SearchDeps],
    term: str,
    condition: str | None = None,
    page_size: int = 15,
) -> dict:
    """Search ClinicalTrials.gov studies and save the matches.

    Args:
        term: Free-text term (drug, target, sponsor)
        condition: Optional condition/disease filter
        page_size: Maximum studies to return (1-100)
    """
    deps = ctx.deps
    adapter: ClinicalTrialsAdapter = deps.adapter

    async def body() -> dict:
        records = await adapter.search(deps.session, term, max(1, min(page_size, 100)), condition)
        added = []
        for record in records:
            target_id = assign_target(f"{record['title']} {term}", deps.context.targets)
            item = adapter.to_item(record, target_id)
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


ClinicalTrialsAdapter.tools = (search_trials,)
