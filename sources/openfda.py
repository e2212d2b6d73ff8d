"""openFDA drug label adapter.

Labels are matched on brand or generic name. Each label links to its
DailyMed page; the indications section becomes the abstract.
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

LABEL_URL = "https://api.fda.gov/drug/label.json"
DAILYMED_URL = "https://dailymed.nlm.nih.gov/dailymed/lookup.cfm?setid={set_id}"
ABSTRACT_CHARS = 500


def label_query(name: str) -> str:
    name = name.replace('"', "")
    return f'openfda.brand_name:"{name}" openfda.generic_name:"{name}"'


def _first(values) -> str:
    if isinstance(values, list) and values:
        return str(values[0])
    return str(values or "")


def _parse_effective_time(value: str) -> datetime | None:
    try:
        return datetime.strptime(value[:8], "%Y%m%d").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def parse_labels(payload: dict) -> list[dict]:
    """Label records from a drug/label.json response."""
    records = []
    for label in payload.get("results", []):
        label_id = label.get("id")
        if not label_id:
            continue
        openfda = label.get("openfda") or {}
        brand = _first(openfda.get("brand_name"))
        generic = _first(openfda.get("generic_name"))
        records.append({
            "id": label_id,
            "set_id": label.get("set_id") or label_id,
            "brand": brand,
            "generic": generic,
            "manufacturer": _first(openfda.get("manufacturer_name")),
            "indications": _first(label.get("indications_and_usage")),
            "effective_time": str(label.get("effective_time") or ""),
        })
    return records


class OpenFdaAdapter(SourceAdapter):
    """Looks up FDA drug labels for product targets."""

    source_id = "openfda"
    latest_limit = 5
    comprehensive_limit = 20
    max_steps = 3
    instructions = (
        "Source: openFDA drug labels. Call search_openfda with a brand or generic drug name; "
        "labels exist only for marketed products."
    )

    async def search(self, session: aiohttp.ClientSession, name: str, limit: int) -> list[dict]:
        params = {"search": label_query(name), "limit": str(limit)}
        resp = await self.fetch(session, LABEL_URL, params=params)
        if not resp.ok:
            # openFDA answers 404 when nothing matches
            return []
        return parse_labels(resp.json())

    @staticmethod
    def to_item(record: dict, target_id: str) -> CandidateItem:
        published = _parse_effective_time(record["effective_time"])
        name = record["brand"] or record["generic"] or "Drug label"
        title = f"{name} label" + (f" ({record['manufacturer']})" if record["manufacturer"] else "")
        metadata = {"setId": record["set_id"], "genericName": record["generic"]}
        if published:
            metadata["publishedDate"] = published.date().isoformat()
        return CandidateItem(
            target_id=target_id,
            external_id=record["id"],
            title=title,
            url=DAILYMED_URL.format(set_id=record["set_id"]),
            abstract=record["indications"][:ABSTRACT_CHARS],
            published_at=published,
            metadata=metadata,
        )

    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        for target in context.targets:
            for term in terms_for(target, context.mode):
                records = await self.isolated(errors, self.search(session, term, self.limit(context)))
                for record in records:
                    collector.add(self.to_item(record, target.id))


async def search_openfda(ctx: RunContext[SearchDeps], drug_name: str, limit: int = 5) -> dict:
    """Search FDA drug labels by brand or generic name and save them.

    Args:
        drug_name: Brand or generic drug name
        limit: Maximum labels (1-20)
    """
    deps = ctx.deps
    adapter: OpenFdaAdapter = deps.adapter

    async def body() -> dict:
        added = []
        for record in await adapter.search(deps.session, drug_name, max(1, min(limit, 20))):
            text = f"{record['brand']} {record['generic']} {drug_name}"
            item = adapter.to_item(record, assign_target(text, deps.context.targets))
            if deps.collector.add(item):
                added.append(item)
        return summarize_added(deps.collector, added)

    return await guarded_tool(deps, body())


OpenFdaAdapter.tools = (search_openfda,)
