"""RSS/Atom feed adapter.

Industry feeds (configured via RSS_URLS) are fetched and parsed with
feedparser. Only entries whose title or summary mentions a target term
are kept.

Error Handling:
    - A feed answering 4xx is skipped (logged at DEBUG)
    - 429/5xx after retries aborts the run with a transient error; entries
      already matched are kept
"""

import logging
from datetime import datetime, timezone

import aiohttp
import feedparser
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
    terms_for,
)
from tools.text import html_to_text, truncate

logger = logging.getLogger(__name__)

SUMMARY_CHARS = 500


def _parse_date(entry: dict) -> datetime | None:
    """Publication date from published, updated, or created (first present)."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        time_tuple = entry.get(field)
        if time_tuple:
            try:
                return datetime(*time_tuple[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def parse_feed_entries(content: str, feed_url: str) -> list[dict]:
    """Parse feed XML into entry records, skipping untitled entries."""
    feed = feedparser.parse(content)
    feed_title = (feed.feed.get("title") or "").strip() if hasattr(feed, "feed") else ""
    records = []
    for entry in feed.entries:
        title = (entry.get("title") or "").strip()
        if not title:
            continue
        link = entry.get("link") or ""
        records.append({
            "id": entry.get("id") or link,
            "title": title,
            "link": link,
            "summary": html_to_text(entry.get("summary") or entry.get("description") or ""),
            "published_at": _parse_date(entry),
            "feed": feed_title or feed_url,
        })
    return records


def matches_terms(record: dict, terms: list[str]) -> bool:
    haystack = f"{record['title']} {record['summary']}".lower()
    return any(term.lower() in haystack for term in terms if term)


def all_terms(targets: list[WatchTarget]) -> list[str]:
    return [term for target in targets for term in target.search_terms]


class RssAdapter(SourceAdapter):
    """Scans configured industry feeds for entries mentioning a target."""

    source_id = "rss"
    latest_limit = 15  # matched entries per feed
    comprehensive_limit = 50
    max_steps = 3
    instructions = (
        "Source: industry RSS feeds. Call fetch_rss_feed for each configured feed with a "
        "filter_query naming the targets (separate alternatives with '|')."
    )

    async def read_feed(self, session: aiohttp.ClientSession, feed_url: str) -> list[dict]:
        resp = await self.fetch(session, feed_url)
        if not resp.ok:
            return []
        return parse_feed_entries(resp.text(), feed_url)

    @staticmethod
    def to_item(record: dict, target_id: str) -> CandidateItem:
        published = record["published_at"]
        return CandidateItem(
            target_id=target_id,
            external_id=record["id"],
            title=record["title"],
            url=record["link"],
            abstract=truncate(record["summary"], SUMMARY_CHARS),
            published_at=published,
            metadata={
                "feed": record["feed"],
                **({"publishedDate": published.date().isoformat()} if published else {}),
            },
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        terms = [t for target in context.targets for t in terms_for(target, context.mode)]
        for feed_url in self.config.rss_urls:
            matched = 0
            for record in await self.isolated(errors, self.read_feed(session, feed_url)):
                if matched >= self.limit(context):
                    break
                if not matches_terms(record, terms):
                    continue
                text = f"{record['title']} {record['summary']}"
                if collector.add(self.to_item(record, assign_target(text, context.targets))):
                    matched += 1
            logger.debug("Feed scanned | url=%s matched=%d", feed_url, matched)


async def fetch_rss_feed(
    ctx: RunContext[SearchDeps],
    feed_url: str,
    filter_query: str | None = None,
    max_items: int = 15,
) -> dict:
    """Fetch one RSS/Atom feed and save entries that mention the targets.

    Args:
        feed_url: Feed URL (one of the configured feeds)
        filter_query: Terms to match in title or summary, separated by '|';
            defaults to every target term
        max_items: Maximum entries to save from this feed (1-50)
    """
    deps = ctx.deps
    adapter: RssAdapter = deps.adapter

    async def body() -> dict:
        terms = [t.strip() for t in (filter_query or "").split("|") if t.strip()]
        terms = terms or all_terms(deps.context.targets)
        added = []
        for record in await adapter.read_feed(deps.session, feed_url):
            if len(added) >= max(1, min(max_items, 50)):
                break
            if not matches_terms(record, terms):
                continue
            text = f"{record['title']} {record['summary']}"
            item = adapter.to_item(record, assign_target(text, deps.context.targets))
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


RssAdapter.tools = (fetch_rss_feed,)
