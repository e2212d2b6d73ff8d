"""
Unit tests for the source adapters.

Provider payload parsers are tested directly; adapter runs go through the
real retry path with the single-request sender replaced, so no network is
touched.
"""

import asyncio
import json

import pytest

import tools.retry as retry
from errors import InvalidScanRequest
from models.scan import ScanMode
from sources import ALL_SOURCE_IDS, build_adapters, validate_sources
from sources.base import Collector, Credentials, SourceContext, assign_target, terms_for
from sources.clinicaltrials import ClinicalTrialsAdapter, parse_studies
from sources.edgar import match_companies, parse_full_text_hits, parse_recent_filings
from sources.exa import ExaAdapter
from sources.openfda import OpenFdaAdapter, parse_labels
from sources.patents import PatentsAdapter, build_query
from sources.pubmed import parse_summaries
from sources.rss import RssAdapter, parse_feed_entries
from tools.retry import HttpResponse

STUDIES = {
    "studies": [
        {
            "protocolSection": {
                "identificationModule": {"nctId": "NCT05000001", "briefTitle": "Semaglutide in NASH"},
                "statusModule": {"startDateStruct": {"date": "2024-03"}, "overallStatus": "TERMINATED"},
                "descriptionModule": {"briefSummary": "A phase 3 study."},
            }
        },
        {"protocolSection": {"identificationModule": {}}},
    ]
}

FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Fierce Biotech</title>
<item><title>Novo halts semaglutide trial</title><link>https://news.test/a</link>
<guid>news-a</guid><description>&lt;p&gt;The &lt;b&gt;Ozempic&lt;/b&gt; maker stopped a study.&lt;/p&gt;</description>
<pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate></item>
<item><title>Unrelated medtech funding round</title><link>https://news.test/b</link><guid>news-b</guid></item>
<item><title></title><link>https://news.test/c</link></item>
</channel></rss>"""


def _context(targets, mode=ScanMode.LATEST, **credentials):
    return SourceContext(
        mission="Find new signals.",
        targets=targets,
        credentials=Credentials(**credentials),
        mode=mode,
    )


def _serve(monkeypatch, responder):
    async def fake_send(session, method, url, timeout, **kwargs):
        return responder(url, kwargs)

    monkeypatch.setattr(retry, "_send", fake_send)


# =============================================================================
# REGISTRY AND SHARED HELPERS
# =============================================================================

class TestRegistry:

    def test_all_sources_registered(self, config):
        assert ALL_SOURCE_IDS == ("pubmed", "clinicaltrials", "edgar", "exa", "openfda", "rss", "patents")
        assert list(build_adapters(config, ["rss", "pubmed"])) == ["pubmed", "rss"]

    def test_agent_step_limits(self):
        assert PatentsAdapter.max_steps == 5
        assert ClinicalTrialsAdapter.max_steps == 5
        assert (OpenFdaAdapter.max_steps, RssAdapter.max_steps) == (3, 3)

    def test_unknown_source(self):
        with pytest.raises(InvalidScanRequest, match="bogus"):
            validate_sources(["pubmed", "bogus"])


class TestTargetHelpers:

    def test_assign_target_by_alias_then_first(self, semaglutide, tirzepatide):
        targets = [tirzepatide, semaglutide]
        assert assign_target("NN9535 data at ADA", targets) == "t-sema"
        assert assign_target("No target named here", targets) == "t-tirz"

    def test_terms_for_mode(self, semaglutide):
        semaglutide.aliases = ["NN9535", "Wegovy", "Rybelsus"]
        assert terms_for(semaglutide, ScanMode.LATEST) == ["semaglutide", "Ozempic", "NN9535"]
        assert len(terms_for(semaglutide, ScanMode.COMPREHENSIVE)) == 5

    def test_collector_dedups_and_puts_known_last(self, semaglutide, make_item):
        collector = Collector([semaglutide], known_ids={"old"})
        assert collector.add(make_item("old", "Seen before"))
        assert collector.add(make_item("new", "Fresh"))
        assert not collector.add(make_item("new", "Fresh again"))
        assert [i.external_id for i in collector.items()] == ["new", "old"]

    def test_collector_reassigns_unknown_target(self, semaglutide, tirzepatide, make_item):
        collector = Collector([semaglutide, tirzepatide], known_ids=set())
        collector.add(make_item("x", "Mounjaro supply update", target_id="hallucinated"))
        assert collector.items()[0].target_id == "t-tirz"


# =============================================================================
# PAYLOAD PARSERS
# =============================================================================

class TestParsers:

    def test_pubmed_summaries_skip_untitled(self):
        payload = {"result": {"1": {"title": " A paper ", "pubdate": "2025 Jan 5"}, "2": {"title": ""}}}
        records = parse_summaries(payload, ["1", "2", "3"])
        assert [(r["pmid"], r["title"], r["pubdate"]) for r in records] == [("1", "A paper", "2025 Jan 5")]

    def test_studies_require_nct_id(self):
        records = parse_studies(STUDIES)
        assert len(records) == 1
        assert records[0]["start_date"] == "2024-03"
        assert records[0]["overall_status"] == "TERMINATED"

    def test_edgar_company_match_and_filings(self):
        companies = [
            {"cik_str": 353278, "ticker": "NVO", "title": "NOVO NORDISK A S"},
            {"cik_str": 59478, "ticker": "LLY", "title": "ELI LILLY & Co"},
        ]
        assert match_companies(companies, "lly") == [companies[1]]
        assert match_companies(companies, "novo") == [companies[0]]

        submissions = {"filings": {"recent": {
            "form": ["8-K", "10-Q", "10-K"],
            "accessionNumber": ["0000059478-25-000001", "0000059478-25-000002", "0000059478-25-000003"],
            "filingDate": ["2025-01-02", "2024-11-01", "2024-02-21"],
            "primaryDocument": ["a.htm", "lly-q3.htm", ""],
        }}}
        records = parse_recent_filings(submissions, companies[1], max_filings=2)
        assert [r["form"] for r in records] == ["10-Q"]
        assert records[0]["url"].endswith("/59478/000005947825000002/lly-q3.htm")

    def test_edgar_full_text_hits(self):
        payload = {"hits": {"hits": [
            {"_id": "0000059478-25-000002:lly-q3.htm", "_source": {
                "adsh": "0000059478-25-000002", "form": "10-Q", "ciks": ["0000059478"],
                "display_names": ["ELI LILLY & Co (LLY)"], "file_date": "2024-11-01",
            }},
            {"_id": "x:y.htm", "_source": {"adsh": "1", "form": "8-K"}},
        ]}}
        records = parse_full_text_hits(payload, count=5)
        assert len(records) == 1
        assert records[0]["cik"] == "59478"

    def test_openfda_labels(self):
        payload = {"results": [{
            "id": "label-1",
            "set_id": "abc",
            "effective_time": "20240115",
            "openfda": {"brand_name": ["OZEMPIC"], "generic_name": ["SEMAGLUTIDE"]},
            "indications_and_usage": ["Adjunct to diet and exercise."],
        }]}
        payload["results"].append({"set_id": "no-id"})
        records = parse_labels(payload)
        assert len(records) == 1
        assert (records[0]["set_id"], records[0]["brand"]) == ("abc", "OZEMPIC")
        assert records[0]["indications"] == "Adjunct to diet and exercise."

    def test_patents_query_is_json_encoded(self):
        query = build_query(["semaglutide", "GLP-1"])
        title_clause = json.loads(query["q"])["_or"][0]
        assert title_clause == {"_text_any": {"patent_title": "semaglutide GLP-1"}}
        assert json.loads(query["f"])[0] == "patent_id"

    def test_feed_entries(self):
        records = parse_feed_entries(FEED, "https://news.test/feed")
        assert [r["id"] for r in records] == ["news-a", "news-b"]
        assert records[0]["summary"] == "The Ozempic maker stopped a study."
        assert records[0]["feed"] == "Fierce Biotech"
        assert records[0]["published_at"].isoformat().startswith("2025-01-06")


# =============================================================================
# ADAPTER RUNS
# =============================================================================

class TestAdapterRuns:

    def test_missing_credential_returns_empty(self, config, semaglutide):
        result = asyncio.run(ExaAdapter(config).run(_context([semaglutide])))
        assert result.items == []
        assert result.error is None

    def test_clinicaltrials_procedural_search(self, monkeypatch, config, semaglutide):
        requested = []

        def responder(url, kwargs):
            requested.append(kwargs["params"]["query.term"])
            return HttpResponse(status=200, body=json.dumps(STUDIES).encode())

        _serve(monkeypatch, responder)
        result = asyncio.run(ClinicalTrialsAdapter(config).run(_context([semaglutide])))

        assert requested == ["semaglutide"]
        assert result.error is None
        item = result.items[0]
        assert (item.external_id, item.target_id) == ("NCT05000001", "t-sema")
        assert item.url == "https://clinicaltrials.gov/study/NCT05000001"
        assert item.metadata["startDate"] == "2024-03"

    def test_rss_filters_by_target_terms(self, monkeypatch, config, semaglutide):
        config.rss_urls = ["https://news.test/feed"]
        _serve(monkeypatch, lambda url, kwargs: HttpResponse(status=200, body=FEED.encode()))

        result = asyncio.run(RssAdapter(config).run(_context([semaglutide])))

        assert [i.external_id for i in result.items] == ["news-a"]
        assert result.items[0].metadata["publishedDate"] == "2025-01-06"

    def test_down_feed_does_not_stop_later_feeds(self, monkeypatch, config, semaglutide):
        config.rss_urls = ["https://down.test/feed", "https://news.test/feed"]

        def responder(url, kwargs):
            if url.startswith("https://down.test"):
                return HttpResponse(status=503)
            return HttpResponse(status=200, body=FEED.encode())

        _serve(monkeypatch, responder)
        result = asyncio.run(RssAdapter(config).run(_context([semaglutide])))

        assert [i.external_id for i in result.items] == ["news-a"]
        assert result.error == "rss: HTTP 503 after retries"

    def test_failed_target_does_not_stop_later_targets(self, monkeypatch, config, semaglutide, tirzepatide):
        def responder(url, kwargs):
            if kwargs["params"]["query.term"] == "semaglutide":
                return HttpResponse(status=503)
            return HttpResponse(status=200, body=json.dumps(STUDIES).encode())

        _serve(monkeypatch, responder)
        result = asyncio.run(ClinicalTrialsAdapter(config).run(_context([semaglutide, tirzepatide])))

        assert [(i.external_id, i.target_id) for i in result.items] == [("NCT05000001", "t-tirz")]
        assert "HTTP 503" in result.error

    def test_persistent_503_becomes_source_error(self, monkeypatch, config, semaglutide):
        calls = []

        def responder(url, kwargs):
            calls.append(url)
            return HttpResponse(status=503)

        _serve(monkeypatch, responder)
        result = asyncio.run(ClinicalTrialsAdapter(config).run(_context([semaglutide])))

        assert result.items == []
        assert "HTTP 503" in result.error
        assert len(calls) == config.retries_429_503 + 1
