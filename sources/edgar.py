"""SEC EDGAR adapter.

Company lookup: the SEC ticker file maps names/tickers to CIKs, then the
submissions API lists each company's recent filings (10-K and 10-Q kept).
Full-text search (efts) is offered to the search agent for broader queries.

SEC requires a descriptive User-Agent with contact details; without
SEC_USER_AGENT the adapter does nothing.
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

COMPANY_TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
SUBMISSIONS_URL = "https://data.sec.gov/submissions/CIK{cik:010d}.json"
FULL_TEXT_URL = "https://efts.sec.gov/LATEST/search-index"
ARCHIVE_URL = "https://www.sec.gov/Archives/edgar/data/{cik}/{path}/{document}"
COMPANY_URL = "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK={cik}"

FORMS_WANTED = ("10-K", "10-Q")
MAX_COMPANIES = 5


def accession_path(accession: str) -> str:
    return accession.replace("-", "")


def filing_title(form: str, company: str, date: str) -> str:
    return f"{form} - {company}{f' ({date})' if date else ''}"


def match_companies(companies: list[dict], term: str, limit: int = MAX_COMPANIES) -> list[dict]:
    """Companies whose title contains the term or whose ticker equals it."""
    term = term.strip().lower()
    if not term:
        return []
    matches = []
    for company in companies:
        title = str(company.get("title", "")).lower()
        ticker = str(company.get("ticker", "")).lower()
        if term in title or ticker == term:
            matches.append(company)
            if len(matches) >= limit:
                break
    return matches


def parse_recent_filings(submissions: dict, company: dict, max_filings: int) -> list[dict]:
    """10-K/10-Q records among the first max_filings recent filings."""
    recent = (submissions.get("filings") or {}).get("recent") or submissions.get("recent") or {}
    forms = recent.get("form") or []
    accessions = recent.get("accessionNumber") or []
    dates = recent.get("filingDate") or []
    primaries = recent.get("primaryDocument") or []

    cik = int(company["cik_str"])
    records = []
    for i in range(min(len(forms), max_filings)):
        if forms[i] not in FORMS_WANTED or i >= len(accessions) or not accessions[i]:
            continue
        path = accession_path(accessions[i])
        document = primaries[i] if i < len(primaries) and primaries[i] else f"{path}.htm"
        date = dates[i] if i < len(dates) else ""
        records.append({
            "accession": accessions[i],
            "form": forms[i],
            "company": company.get("title", ""),
            "cik": str(cik),
            "date": date,
            "url": ARCHIVE_URL.format(cik=cik, path=path, document=document),
        })
    return records


def parse_full_text_hits(payload: dict, count: int) -> list[dict]:
    """Records from an efts search response, 10-K/10-Q only."""
    records = []
    for hit in (payload.get("hits") or {}).get("hits") or []:
        src = hit.get("_source") or {}
        form = src.get("form") or (src.get("root_forms") or [""])[0]
        accession = src.get("adsh") or ""
        if form not in FORMS_WANTED or not accession:
            continue
        cik = (src.get("ciks") or [""])[0]
        path = accession_path(accession)
        doc_id = hit.get("_id") or ""
        document = doc_id.split(":", 1)[1] if ":" in doc_id else f"{path}.htm"
        url = (
            ARCHIVE_URL.format(cik=int(cik), path=path, document=document)
            if cik else COMPANY_URL.format(cik=cik)
        )
        records.append({
            "accession": accession,
            "form": form,
            "company": (src.get("display_names") or ["Unknown"])[0],
            "cik": str(int(cik)) if cik else "",
            "date": src.get("file_date") or "",
            "url": url,
        })
        if len(records) >= count:
            break
    return records


def _parse_filing_date(value: str) -> datetime | None:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


class EdgarAdapter(SourceAdapter):
    """Finds recent periodic filings for watched companies."""

    source_id = "edgar"
    credential = "sec_user_agent"
    latest_limit = 20  # recent filings inspected per company
    comprehensive_limit = 40
    instructions = (
        "Source: SEC EDGAR. Use search_sec_by_company for a company name or ticker, and "
        "search_sec_full_text for drug or program names mentioned inside filings."
    )

    def __init__(self, config):
        super().__init__(config)
        self._companies: list[dict] | None = None

    def session_headers(self, context: SourceContext) -> dict[str, str]:
        return {"User-Agent": context.credentials.sec_user_agent, "Accept": "application/json"}

    async def companies(self, session: aiohttp.ClientSession) -> list[dict]:
        """The SEC ticker file, loaded once per adapter instance."""
        if self._companies is None:
            resp = await self.fetch(session, COMPANY_TICKERS_URL)
            self._companies = list(resp.json().values()) if resp.ok else []
        return self._companies

    async def search_by_company(
        self,
        session: aiohttp.ClientSession,
        term: str,
        max_filings: int,
    ) -> list[dict]:
        records = []
        for company in match_companies(await self.companies(session), term):
            resp = await self.fetch(session, SUBMISSIONS_URL.format(cik=int(company["cik_str"])))
            if resp.ok:
                records.extend(parse_recent_filings(resp.json(), company, max_filings))
        return records

    async def search_full_text(
        self,
        session: aiohttp.ClientSession,
        query: str,
        count: int = 20,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        params = {"q": query, "start": "0", "count": str(count), "forms": ",".join(FORMS_WANTED)}
        if start_date:
            params["dateRange"] = "custom"
            params["startdt"] = start_date
        if end_date:
            params["enddt"] = end_date
        resp = await self.fetch(session, FULL_TEXT_URL, params=params)
        if not resp.ok:
            return []
        return parse_full_text_hits(resp.json(), count)

    @staticmethod
    def to_item(record: dict, target_id: str) -> CandidateItem:
        return CandidateItem(
            target_id=target_id,
            external_id=record["accession"],
            title=filing_title(record["form"], record["company"], record["date"]),
            url=record["url"],
            published_at=_parse_filing_date(record["date"]),
            metadata={"cik": record["cik"], "form": record["form"], "company": record["company"]},
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        for target in context.targets:
            lookups = [target.company] if target.company else []
            lookups += terms_for(target, context.mode)
            for term in dict.fromkeys(t for t in lookups if t):
                records = await self.isolated(errors, self.search_by_company(session, term, self.limit(context)))
                for record in records:
                    collector.add(self.to_item(record, target.id))
            if context.comprehensive:
                query = f'"{target.name}"'
                records = await self.isolated(errors, self.search_full_text(session, query))
                for record in records:
                    collector.add(self.to_item(record, target.id))


async def search_sec_by_company(ctx: RunContext[SearchDeps], company_or_ticker: str) -> dict:
    """Look up a company by name or ticker and save its recent 10-K/10-Q filings.

    Args:
        company_or_ticker: Company name fragment or exact ticker
    """
    deps = ctx.deps
    adapter: EdgarAdapter = deps.adapter

    async def body() -> dict:
        records = await adapter.search_by_company(
            deps.session, company_or_ticker, adapter.limit(deps.context)
        )
        added = []
        for record in records:
            text = f"{record['company']} {company_or_ticker}"
            item = adapter.to_item(record, assign_target(text, deps.context.targets))
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


async def search_sec_full_text(
    ctx: RunContext[SearchDeps],
    query: str,
    count: int = 20,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    """Full-text search across EDGAR filings and save 10-K/10-Q hits.

    Args:
        query: Phrase to search inside filings (quote exact phrases)
        count: Maximum filings (1-100)
        start_date: Earliest filing date, YYYY-MM-DD
        end_date: Latest filing date, YYYY-MM-DD
    """
    deps = ctx.deps
    adapter: EdgarAdapter = deps.adapter

    async def body() -> dict:
        records = await adapter.search_full_text(
            deps.session, query, max(1, min(count, 100)), start_date, end_date
        )
        added = []
        for record in records:
            text = f"{record['company']} {query}"
            item = adapter.to_item(record, assign_target(text, deps.context.targets))
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


EdgarAdapter.tools = (search_sec_by_company, search_sec_full_text)
