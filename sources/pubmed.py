"""PubMed adapter (NCBI E-utilities).

Two calls per search: esearch returns PMIDs for a query, esummary returns
titles and publication dates for those PMIDs. NCBI allows 3 requests/second
without a key, so esummary waits 200 ms after esearch.
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

ESEARCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"
ESUMMARY_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi"
ARTICLE_URL = "https://pubmed.ncbi.nlm.nih.gov/{pmid}/"
ESUMMARY_THROTTLE = 0.2  # seconds


def _parse_sortpubdate(value: str) -> datetime | None:
    """Parse esummary's 'YYYY/MM/DD HH:MM' sort date."""
    try:
        return datetime.strptime(value[:10], "%Y/%m/%d").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def parse_summaries(payload: dict, pmids: list[str]) -> list[dict]:
    """Extract {pmid, title, pubdate, sortpubdate, journal} records from esummary JSON."""
    result = payload.get("result") or {}
    records = []
    for pmid in pmids:
        doc = result.get(pmid)
        if not isinstance(doc, dict) or not doc.get("title"):
            continue
        records.append({
            "pmid": pmid,
            "title": doc["title"].strip(),
            "pubdate": doc.get("pubdate", ""),
            "sortpubdate": doc.get("sortpubdate", ""),
            "journal": doc.get("fulljournalname", ""),
        })
    return records


class PubMedAdapter(SourceAdapter):
    """Searches PubMed for publications about each target."""

    source_id = "pubmed"
    latest_limit = 5
    comprehensive_limit = 20
    instructions = (
        "Source: PubMed. Use search_pubmed with concise boolean queries such as "
        "'semaglutide AND (phase 3 OR discontinued)'. Dates use YYYY/MM/DD."
    )

    async def search(
        self,
        session: aiohttp.ClientSession,
        context: SourceContext,
        query: str,
        retmax: int,
        min_date: str | None = None,
        max_date: str | None = None,
    ) -> list[dict]:
        """Run esearch + esummary for one query."""
        params = {"db": "pubmed", "term": query, "retmax": str(retmax), "retmode": "json"}
        if context.credentials.pubmed_api_key:
            params["api_key"] = context.credentials.pubmed_api_key
        if min_date or max_date:
            params["datetype"] = "pdat"
            params["mindate"] = min_date or "1900/01/01"
            params["maxdate"] = max_date or datetime.now(timezone.utc).strftime("%Y/%m/%d")

        resp = await self.fetch(session, ESEARCH_URL, params=params)
        if not resp.ok:
            return []
        pmids = [str(p) for p in resp.json().get("esearchresult", {}).get("idlist", [])]
        if not pmids:
            return []

        summary_params = {"db": "pubmed", "id": ",".join(pmids), "retmode": "json"}
        if "api_key" in params:
            summary_params["api_key"] = params["api_key"]
        resp = await self.fetch(session, ESUMMARY_URL, params=summary_params, throttle=ESUMMARY_THROTTLE)
        if not resp.ok:
            return []
        return parse_summaries(resp.json(), pmids)

    @staticmethod
    def to_item(record: dict, target_id: str) -> CandidateItem:
        return CandidateItem(
            target_id=target_id,
            external_id=record["pmid"],
            title=record["title"],
            url=ARTICLE_URL.format(pmid=record["pmid"]),
            published_at=_parse_sortpubdate(record["sortpubdate"]),
            metadata={"pubdate": record["pubdate"], "journal": record["journal"]},
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
            query = " OR ".join(terms)
            records = await self.isolated(errors, self.search(session, context, query, self.limit(context)))
            for record in records:
                collector.add(self.to_item(record, target.id))


async def search_pubmed(
    ctx: RunContext[SearchDeps],
    query: str,
    max_results: int = 10,
    min_date: str | None = None,
    max_date: str | None = None,
) -> dict:
    """Search PubMed and save matching articles.

    Args:
        query: PubMed query string (boolean operators allowed)
        max_results: Maximum articles to return (1-50)
        min_date: Earliest publication date, YYYY/MM/DD
        max_date: Latest publication date, YYYY/MM/DD
    """
    deps = ctx.deps
    adapter: PubMedAdapter = deps.adapter

    async def body() -> dict:
        records = await adapter.search(
            deps.session, deps.context, query, max(1, min(max_results, 50)), min_date, max_date
        )
        added = []
        for record in records:
            target_id = assign_target(f"{record['title']} {query}", deps.context.targets)
            item = adapter.to_item(record, target_id)
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


PubMedAdapter.tools = (search_pubmed,)
