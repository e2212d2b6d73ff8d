"""
Unit tests for the SQLite store.

Tests cover:
- (source, external_id) dedup across runs
- Scan run and source status bookkeeping
- Schedule upsert and last-run marker claims
- Feedback examples
- Schema shape of a fresh database
"""

from models.digest import DigestDraft, DigestItemDraft, Feedback
from models.scan import Period, RunStatus, ScanMode, SourceState
from models.schedule import Schedule


class TestRawItemDedup:

    def test_second_insert_of_same_item_is_ignored(self, db, stored_targets, make_item):
        run_a = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], ["pubmed"])
        run_b = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], ["pubmed"])
        item = make_item("12345", "Semaglutide phase 3 readout")

        first = db.insert_raw_items(run_a.id, "pubmed", [item])
        second = db.insert_raw_items(run_b.id, "pubmed", [item.model_copy(update={"title": "Changed"})])

        assert len(first) == 1
        assert second == []
        stored = db.raw_items_for_run(run_a.id)
        assert [i.title for i in stored] == ["Semaglutide phase 3 readout"]
        assert db.raw_items_for_run(run_b.id) == []

    def test_same_external_id_in_other_source_is_distinct(self, db, stored_targets, make_item):
        run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], ["pubmed", "rss"])
        item = make_item("shared-1", "Same id, different provider")

        assert len(db.insert_raw_items(run.id, "pubmed", [item])) == 1
        assert len(db.insert_raw_items(run.id, "rss", [item])) == 1
        assert db.existing_external_ids(["pubmed"]) == {"pubmed": {"shared-1"}}

    def test_metadata_and_date_round_trip(self, db, stored_targets, make_item):
        run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], ["clinicaltrials"])
        item = make_item("NCT01", "Trial", metadata={"startDate": "2024-03"})
        db.insert_raw_items(run.id, "clinicaltrials", [item])

        stored = db.raw_items_for_run(run.id)[0]
        assert stored.metadata == {"startDate": "2024-03"}
        assert stored.published_at == item.published_at


class TestSchema:

    def test_digest_runs_created_with_strategy_column(self, db):
        row = db.conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = 'digest_runs'"
        ).fetchone()
        assert "strategy TEXT NOT NULL DEFAULT 'deterministic'" in row["sql"]


class TestScanRuns:

    def test_run_created_with_pending_statuses(self, db):
        run = db.create_scan_run(Period.WEEKLY, ScanMode.COMPREHENSIVE, ["a"], ["pubmed", "edgar"])

        statuses = {s.source: s.status for s in db.source_statuses(run.id)}
        assert statuses == {"edgar": SourceState.PENDING, "pubmed": SourceState.PENDING}
        assert db.get_scan_run(run.id).sources_total == 2

    def test_terminal_status_stamps_completion(self, db):
        run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, [], ["pubmed"])
        db.update_scan_run(run.id, status=RunStatus.COMPLETED, new_found=3)

        stored = db.get_scan_run(run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.new_found == 3
        assert stored.completed_at is not None

    def test_source_status_upsert(self, db):
        run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, [], ["pubmed"])
        db.set_source_status(run.id, "pubmed", SourceState.FAILED, items_found=2, error="pubmed: HTTP 503")

        status = db.source_statuses(run.id)[0]
        assert status.status == SourceState.FAILED
        assert status.items_found == 2
        assert status.error == "pubmed: HTTP 503"


class TestSchedules:

    def test_upsert_keeps_one_global_row_per_user(self, db):
        db.upsert_schedule(Schedule(daily_enabled=True, daily_hour=9))
        db.upsert_schedule(Schedule(daily_enabled=True, daily_hour=10))

        schedules = db.list_schedules()
        assert len(schedules) == 1
        assert schedules[0].daily_hour == 10

    def test_daily_claim_succeeds_once_per_date(self, db):
        schedule = db.upsert_schedule(Schedule(daily_enabled=True))

        assert db.claim_daily_run(schedule.id, "2025-01-06") is True
        assert db.claim_daily_run(schedule.id, "2025-01-06") is False
        assert db.claim_daily_run(schedule.id, "2025-01-07") is True

    def test_upsert_preserves_markers(self, db):
        schedule = db.upsert_schedule(Schedule(weekly_enabled=True))
        db.claim_weekly_run(schedule.id, "2025-01-06")

        updated = db.upsert_schedule(Schedule(weekly_enabled=True, weekly_hour=7))
        assert updated.last_weekly_run_date == "2025-01-06"


class TestFeedback:

    def test_rated_digest_and_raw_items_become_examples(self, db, stored_targets, make_item):
        run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], ["pubmed"])
        raw_ids = db.insert_raw_items(run.id, "pubmed", [make_item("1", "Liked paper", abstract="Body")])
        draft = DigestDraft(
            executive_summary="1 new source this period.",
            items=[DigestItemDraft(
                target_id="t-sema",
                raw_item_ids=raw_ids,
                headline="Disliked headline",
                synthesis="Noise",
            )],
        )
        digest = db.save_digest(draft, Period.DAILY, "fp-1", scan_run_id=run.id)
        item = db.digest_items(digest.id)[0]

        assert db.set_digest_item_feedback(item.id, Feedback.BAD)
        assert db.set_raw_item_feedback(raw_ids[0], Feedback.GOOD)

        examples = db.feedback_examples(["t-sema"])
        assert [e.headline for e in examples.good] == ["Liked paper"]
        assert [e.headline for e in examples.bad] == ["Disliked headline"]
        assert examples.bad[0].target_name == "Ozempic"

    def test_no_feedback_is_falsy(self, db):
        assert not db.feedback_examples()
