"""Exa web search adapter.

Requires EXA_API_KEY. Queries are biased toward drug-development coverage
and return up to 500 characters of page text per hit.
"""

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

SEARCH_URL = "https://api.exa.ai/search"
QUERY_SUFFIX = "biopharma drug development clinical"
TEXT_CHARS = 500


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ExaAdapter(SourceAdapter):
    """Searches the web through Exa for news about each target."""

    source_id = "exa"
    credential = "exa_api_key"
    latest_limit = 5
    comprehensive_limit = 15
    instructions = (
        "Source: Exa web search. Use search_web with specific phrases (drug name plus "
        "event, e.g. 'tirzepatide FDA approval'). Use start_date (YYYY-MM-DD) for recency."
    )

    def session_headers(self, context: SourceContext) -> dict[str, str]:
        return {"x-api-key": context.credentials.exa_api_key}

    async def search(
        self,
        session: aiohttp.ClientSession,
        query: str,
        num_results: int,
        start_date: str | None = None,
    ) -> list[dict]:
        body = {
            "query": f"{query} {QUERY_SUFFIX}",
            "numResults": num_results,
            "type": "auto",
            "contents": {"text": {"maxCharacters": TEXT_CHARS}},
        }
        if start_date:
            body["startPublishedDate"] = start_date
        resp = await self.fetch(session, SEARCH_URL, method="POST", json=body)
        if not resp.ok:
            return []
        return resp.json().get("results", [])

    @staticmethod
    def to_item(hit: dict, target_id: str, fallback_id: str) -> CandidateItem:
        url = hit.get("url") or ""
        return CandidateItem(
            target_id=target_id,
            external_id=hit.get("id") or url or fallback_id,
            title=hit.get("title") or url or "Exa result",
            url=url,
            abstract=hit.get("text") or "",
            published_at=parse_iso_datetime(hit.get("publishedDate")),
            metadata={"publishedDate": hit.get("publishedDate")} if hit.get("publishedDate") else {},
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        for target in context.targets:
            query = " ".join(terms_for(target, context.mode))
            hits = await self.isolated(errors, self.search(session, query, self.limit(context)))
            for i, hit in enumerate(hits):
                collector.add(self.to_item(hit, target.id, f"{target.id}-{i}"))


async def search_web(
    ctx: RunContext[SearchDeps],
    query: str,
    num_results: int = 5,
    start_date: str | None = None,
) -> dict:
    """Search the web with Exa and save the results.

    Args:
        query: Search phrase
        num_results: Maximum results (1-25)
        start_date: Only results published on or after this date, YYYY-MM-DD
    """
    deps = ctx.deps
    adapter: ExaAdapter = deps.adapter

    async def body() -> dict:
        hits = await adapter.search(deps.session, query, max(1, min(num_results, 25)), start_date)
        added = []
        for i, hit in enumerate(hits):
            text = f"{hit.get('title') or ''} {query}"
            item = adapter.to_item(hit, assign_target(text, deps.context.targets), f"{query}-{i}")
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


ExaAdapter.tools = (search_web,)
