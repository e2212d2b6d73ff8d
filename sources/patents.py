"""PatentsView adapter.

Requires PATENTSVIEW_API_KEY. The API allows 45 requests/minute, so every
request waits 1.7 s first.
"""

import json
import logging
from datetime import datetime, timezone

import aiohttp
from pydantic_ai import RunContext

from agents.search import SearchDeps
from models.items import CandidateItem
from sources.base import (
    Collector,
    SourceAdapter,
    SourceContext,
    assign_target,
    guarded_tool,
    summarize_added,
    terms_for,
)

logger = logging.getLogger(__name__)

PATENT_URL = "https://search.patentsview.org/api/v1/patent/"
GOOGLE_PATENT_URL = "https://patents.google.com/patent/US{patent_id}"
FIELDS = ["patent_id", "patent_title", "patent_abstract", "patent_date"]


def build_query(terms: list[str]) -> dict[str, str]:
    """Query-string parameters for a title-or-abstract text search."""
    text = " ".join(terms)
    q = {"_or": [
        {"_text_any": {"patent_title": text}},
        {"_text_any": {"patent_abstract": text}},
    ]}
    return {
        "q": json.dumps(q),
        "f": json.dumps(FIELDS),
        "s": json.dumps([{"patent_date": "desc"}]),
    }


def parse_patents(payload: dict) -> list[dict]:
    return [p for p in payload.get("patents") or [] if p.get("patent_id")]


def _parse_patent_date(value: str | None) -> datetime | None:
    try:
        return datetime.strptime(value or "", "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class PatentsAdapter(SourceAdapter):
    """Searches granted US patents mentioning each target."""

    source_id = "patents"
    credential = "patentsview_api_key"
    latest_limit = 5
    comprehensive_limit = 25
    throttle = 1.7
    instructions = (
        "Source: PatentsView (granted US patents). Call search_patents with drug, target, "
        "or company terms; results are newest first."
    )

    def session_headers(self, context: SourceContext) -> dict[str, str]:
        return {"X-Api-Key": context.credentials.patentsview_api_key}

    async def search(self, session: aiohttp.ClientSession, terms: list[str], size: int) -> list[dict]:
        params = build_query(terms)
        params["o"] = json.dumps({"size": size})
        resp = await self.fetch(session, PATENT_URL, params=params)
        if not resp.ok:
            return []
        return parse_patents(resp.json())

    @staticmethod
    def to_item(patent: dict, target_id: str) -> CandidateItem:
        patent_id = str(patent["patent_id"])
        return CandidateItem(
            target_id=target_id,
            external_id=patent_id,
            title=patent.get("patent_title") or f"US patent {patent_id}",
            url=GOOGLE_PATENT_URL.format(patent_id=patent_id),
            abstract=patent.get("patent_abstract") or "",
            published_at=_parse_patent_date(patent.get("patent_date")),
            metadata={"patentDate": patent.get("patent_date") or ""},
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        for target in context.targets:
            terms = terms_for(target, context.mode)
            if not terms:
                continue
            patents = await self.isolated(errors, self.search(session, terms, self.limit(context)))
            for patent in patents:
                collector.add(self.to_item(patent, target.id))


async def search_patents(ctx: RunContext[SearchDeps], terms: list[str], size: int = 5) -> dict:
    """Search granted US patents by title/abstract text and save them.

    Args:
        terms: Words or names to match (any of them)
        size: Maximum patents (1-50)
    """
    deps = ctx.deps
    adapter: PatentsAdapter = deps.adapter

    async def body() -> dict:
        added = []
        for patent in await adapter.search(deps.session, terms, max(1, min(size, 50))):
            text = f"{patent.get('patent_title') or ''} {' '.join(terms)}"
            item = adapter.to_item(patent, assign_target(text, deps.context.targets))
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


PatentsAdapter.tools = (search_patents,)
