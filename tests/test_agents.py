"""
Unit tests for the relevance filter and summary enrichment.

The model calls are replaced by injected judges/summarizers; without a
credential both stages must be the identity.
"""

import asyncio

from agents.enrichment import SummaryEnricher
from agents.relevance import BATCH_SIZE, RelevanceFilter, build_queries


class TestRelevanceFilter:

    def test_identity_without_credentials(self, config, semaglutide, make_item):
        items = [make_item("1", "Anything"), make_item("2", "Else")]
        kept = asyncio.run(RelevanceFilter(config).filter(items, [semaglutide]))
        assert kept == items

    def test_drops_items_judged_irrelevant(self, config, semaglutide, make_item):
        items = [make_item("1", "Semaglutide trial discontinued"), make_item("2", "Top 10 diet tips")]

        async def judge(queries):
            return ["discontinued" in q.title for q in queries]

        kept = asyncio.run(RelevanceFilter(config, judge=judge).filter(items, [semaglutide]))

        assert [i.external_id for i in kept] == ["1"]

    def test_short_verdict_list_drops_the_rest(self, config, semaglutide, make_item):
        items = [make_item(str(i), f"Item {i}") for i in range(3)]

        async def judge(queries):
            return [True]

        kept = asyncio.run(RelevanceFilter(config, judge=judge).filter(items, [semaglutide]))
        assert [i.external_id for i in kept] == ["0"]

    def test_failed_batch_is_kept(self, config, semaglutide, make_item):
        items = [make_item(str(i), f"Item {i}") for i in range(BATCH_SIZE + 2)]
        calls = []

        async def judge(queries):
            calls.append(len(queries))
            if len(calls) == 1:
                raise RuntimeError("rate limited")
            return [False] * len(queries)

        kept = asyncio.run(RelevanceFilter(config, judge=judge).filter(items, [semaglutide]))

        assert calls == [BATCH_SIZE, 2]
        assert len(kept) == BATCH_SIZE

    def test_queries_carry_the_target_goal(self, semaglutide, make_item):
        queries = build_queries(
            [make_item("1", "Title", abstract="  spaced\n\nsnippet "), make_item("2", "Orphan", target_id="gone")],
            [semaglutide],
        )
        assert queries[0].goal == "trial discontinuations only"
        assert queries[0].snippet == "spaced snippet"
        assert queries[1].goal == "general updates"


class TestSummaryEnricher:

    def test_identity_without_credentials(self, config, make_item):
        items = [make_item("1", "No abstract")]
        assert asyncio.run(SummaryEnricher(config).enrich(items, "edgar")) == items

    def test_fills_only_missing_abstracts(self, config, make_item):
        items = [
            make_item("1", "10-K filing", abstract=""),
            make_item("2", "Paper", abstract="Existing abstract."),
        ]
        seen = []

        async def summarizer(batch, source):
            seen.append((source, [i.external_id for i in batch]))
            return ["Annual report describing the pipeline."]

        enriched = asyncio.run(SummaryEnricher(config, summarizer=summarizer).enrich(items, "edgar"))

        assert seen == [("edgar", ["1"])]
        assert enriched[0].abstract == "Annual report describing the pipeline."
        assert enriched[1].abstract == "Existing abstract."

    def test_failure_leaves_items_unchanged(self, config, make_item):
        items = [make_item("1", "10-K filing")]

        async def summarizer(batch, source):
            raise RuntimeError("timeout")

        enriched = asyncio.run(SummaryEnricher(config, summarizer=summarizer).enrich(items, "edgar"))
        assert enriched[0].abstract == ""
