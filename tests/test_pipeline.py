"""
Integration tests for scan orchestration.

Adapters are the scripted fakes from tests/fakes.py.
"""

import asyncio

import pytest

from agents.relevance import RelevanceFilter
from errors import InvalidScanRequest
from models.scan import Period, RunStatus, ScanMode, ScanRequest, SourceState
from pipeline import Orchestrator
from tests.fakes import KeyedAdapter, ScriptedAdapter, SlowAdapter, keep_discontinuations


@pytest.fixture
def records():
    return [
        ("PMID-1", "Semaglutide phase 3 trial discontinued"),
        ("PMID-2", "Ten weight-loss tips"),
        ("PMID-3", "Biotech stocks rally on rate cut hopes"),
    ]


def _orchestrator(config, db, adapters, judge=keep_discontinuations):
    return Orchestrator(
        config,
        db,
        adapters={a.source_id: a for a in adapters},
        relevance=RelevanceFilter(config, judge=judge),
    )


class TestOrchestrator:

    def test_end_to_end_daily_scan(self, config, db, stored_targets, records):
        adapter = ScriptedAdapter(config, records)
        orchestrator = _orchestrator(config, db, [adapter])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert result.new_found == 1
        assert result.total_found == 1
        assert result.failed_sources == []
        assert result.digest_run_id is not None

        digest = db.get_digest_run(result.digest_run_id)
        assert digest.low_count == 1
        assert digest.executive_summary == "1 new source this period."

        run = db.get_scan_run(result.scan_run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.target_ids == ["t-sema", "t-tirz"]
        status = db.source_statuses(run.id)[0]
        assert (status.status, status.items_found) == (SourceState.COMPLETED, 1)

        assert len(db.raw_items_for_run(run.id)) == 1
        stored = db.raw_items_for_run(run.id)[0]
        assert stored.target_id == "t-sema"
        assert "trial discontinuations only" in adapter.contexts[0].mission

    def test_rescan_finds_nothing_new_and_skips_daily_digest(self, config, db, stored_targets, records):
        orchestrator = _orchestrator(config, db, [ScriptedAdapter(config, records)])

        asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))
        second = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert second.new_found == 0
        assert second.digest_run_id is None
        assert len(db.recent_digest_runs()) == 1

    def test_weekly_scan_always_digests(self, config, db, stored_targets):
        orchestrator = _orchestrator(config, db, [ScriptedAdapter(config, [])])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.WEEKLY)))

        assert result.new_found == 0
        digest = db.get_digest_run(result.digest_run_id)
        assert digest.fingerprint is None
        assert digest.executive_summary == "No new sources this period."

    def test_failing_source_keeps_partial_items(self, config, db, stored_targets, records):
        healthy = ScriptedAdapter(config, [("PMID-9", "Tirzepatide trial discontinued")])
        broken = KeyedAdapter(config, records, fail_after=True)
        config.exa_api_key = "key"
        orchestrator = _orchestrator(config, db, [healthy, broken])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert result.failed_sources == ["keyed"]
        assert result.new_found == 2
        statuses = {s.source: s for s in db.source_statuses(result.scan_run_id)}
        assert statuses["keyed"].status == SourceState.FAILED
        assert "HTTP 503" in statuses["keyed"].error
        assert statuses["scripted"].status == SourceState.COMPLETED

    def test_source_without_credentials_is_skipped(self, config, db, stored_targets, records):
        orchestrator = _orchestrator(config, db, [KeyedAdapter(config, records)])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert result.new_found == 0
        assert result.failed_sources == []
        assert db.source_statuses(result.scan_run_id)[0].status == SourceState.SKIPPED

    def test_source_timeout_fails_only_that_source(self, config, db, stored_targets, records):
        config.source_timeout_seconds = 0.05
        orchestrator = _orchestrator(config, db, [ScriptedAdapter(config, records), SlowAdapter(config, [])])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert result.failed_sources == ["slow"]
        assert result.new_found == 1

    def test_no_targets_completes_immediately(self, config, db, records):
        adapter = ScriptedAdapter(config, records)
        orchestrator = _orchestrator(config, db, [adapter])

        result = asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY)))

        assert result.message == "No watch targets"
        assert adapter.contexts == []
        assert db.get_scan_run(result.scan_run_id).status == RunStatus.COMPLETED

    def test_unknown_source_rejected_before_any_write(self, config, db, stored_targets, records):
        orchestrator = _orchestrator(config, db, [ScriptedAdapter(config, records)])

        with pytest.raises(InvalidScanRequest):
            asyncio.run(orchestrator.run(ScanRequest(period=Period.DAILY, sources=["nope"])))
        assert db.stats()["scan_runs"] == 0

    def test_explicit_targets_and_mode(self, config, db, stored_targets, records):
        adapter = ScriptedAdapter(config, records)
        orchestrator = _orchestrator(config, db, [adapter])

        asyncio.run(orchestrator.run(ScanRequest(
            period=Period.DAILY, target_ids=["t-tirz"], mode=ScanMode.COMPREHENSIVE,
        )))

        context = adapter.contexts[0]
        assert [t.id for t in context.targets] == ["t-tirz"]
        assert context.comprehensive
        assert "Comprehensive search." in context.mission

    def test_resumes_precreated_run(self, config, db, stored_targets, records):
        precreated = db.create_scan_run(Period.DAILY, ScanMode.LATEST, [], [])
        orchestrator = _orchestrator(config, db, [ScriptedAdapter(config, records)])

        result = asyncio.run(orchestrator.run(
            ScanRequest(period=Period.DAILY, scan_run_id=precreated.id)
        ))

        assert result.scan_run_id == precreated.id
        run = db.get_scan_run(precreated.id)
        assert run.sources_total == 1
        assert run.new_found == 1
