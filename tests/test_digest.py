"""
Unit tests for digest synthesis.

Tests cover:
- Fingerprints and duplicate suppression
- Deterministic digest shape and headline/synthesis equivalence
- Source date labels
- Validation of generated digests
"""

import asyncio
from datetime import datetime, timezone

from digest import (
    NO_SUMMARY_PLACEHOLDER,
    DigestSynthesizer,
    assemble_generated_digest,
    build_deterministic_digest,
    compute_fingerprint,
    format_source_date,
    synthesis_equivalent_to_headline,
)
from models.digest import (
    Category,
    GeneratedDigest,
    GeneratedDigestItem,
    Significance,
)
from models.scan import Period, ScanMode


def _ingest(db, make_item, items, source="pubmed"):
    run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, ["t-sema"], [source])
    db.insert_raw_items(run.id, source, items)
    return run


# =============================================================================
# PURE HELPERS
# =============================================================================

class TestFingerprint:

    def test_order_independent(self):
        assert compute_fingerprint(["b", "a"]) == compute_fingerprint(["a", "b"])

    def test_sha256_of_sorted_ids(self):
        import hashlib
        assert compute_fingerprint(["b", "a"]) == hashlib.sha256(b"a,b").hexdigest()


class TestEquivalence:

    def test_identical_after_normalization(self):
        assert synthesis_equivalent_to_headline("Phase 2 trial begins", "phase 2  trial begins ")

    def test_short_texts_only_match_exactly(self):
        assert not synthesis_equivalent_to_headline("Trial", "Trial ok")

    def test_containment_with_small_delta(self):
        assert synthesis_equivalent_to_headline(
            "Semaglutide trial halted",
            "Semaglutide trial halted early by sponsor",
        )

    def test_reordered_words_match_by_jaccard(self):
        assert synthesis_equivalent_to_headline(
            "Trial begins for phase 2 drug",
            "phase 2 drug trial begins for",
        )

    def test_word_overlap_just_under_threshold(self):
        # 11 shared words out of 13 is 0.846
        assert not synthesis_equivalent_to_headline(
            "Sponsor halts phase 3 semaglutide trial in NASH after interim futility review",
            "After interim futility review sponsor stops phase 3 semaglutide trial in NASH",
        )

    def test_distinct_texts(self):
        assert not synthesis_equivalent_to_headline(
            "Semaglutide trial halted",
            "The sponsor cited futility at the interim analysis and will not pursue the indication further.",
        )


class TestSourceDates:

    def test_pubmed_uses_provider_pubdate(self):
        assert format_source_date("pubmed", None, {"pubdate": "2025 Jan 5"}) == "Pub date: 2025 Jan 5"

    def test_trial_start_from_partial_iso(self):
        assert format_source_date("clinicaltrials", None, {"startDate": "2024-03"}) == "Trial start: Mar 1, 2024"

    def test_falls_back_to_published_at(self):
        when = datetime(2025, 1, 5, tzinfo=timezone.utc)
        assert format_source_date("exa", when, {}) == "Published: Jan 5, 2025"
        assert format_source_date("edgar", when, None) == "Filed: Jan 5, 2025"

    def test_no_date(self):
        assert format_source_date("rss", None, {}) is None


# =============================================================================
# DRAFT BUILDING
# =============================================================================

class TestDeterministicDigest:

    def test_empty_input(self):
        draft = build_deterministic_digest([])
        assert draft.executive_summary == "No new sources this period."
        assert draft.items == []

    def test_one_entry_per_item(self, db, stored_targets, make_item):
        run = _ingest(db, make_item, [
            make_item("1", "Phase 2 trial begins", abstract="Phase 2 trial begins"),
            make_item("2", "Label update", abstract="The FDA approved a revised label."),
        ])
        items = db.raw_items_for_run(run.id)

        draft = build_deterministic_digest(items)

        assert draft.executive_summary == "2 new sources this period."
        assert draft.low_count == 2
        assert draft.critical_count == draft.high_count == draft.medium_count == 0
        assert all(e.significance == Significance.MEDIUM for e in draft.items)
        assert all(e.category == Category.PUBLICATION for e in draft.items)
        assert draft.items[0].synthesis == NO_SUMMARY_PLACEHOLDER
        assert draft.items[1].synthesis == "The FDA approved a revised label."

    def test_capped_at_fifty(self, db, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item(str(i), f"Item {i}") for i in range(60)])
        draft = build_deterministic_digest(db.raw_items_for_run(run.id))
        assert len(draft.items) == 50


class TestGeneratedDigest:

    def test_invalid_indices_dropped_and_ranked(self, db, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item("1", "A"), make_item("2", "B")])
        items = db.raw_items_for_run(run.id)
        generated = GeneratedDigest(
            executive_summary="Two developments.",
            items=[
                GeneratedDigestItem(target_name="Ozempic", significance="low", headline="Low", source_indices=[0]),
                GeneratedDigestItem(target_name="Ozempic", headline="Ghost", source_indices=[7]),
                GeneratedDigestItem(
                    target_name="mounjaro", category="Trial Update", significance="critical",
                    headline="Critical", source_indices=[1, 1],
                ),
            ],
        )

        draft = assemble_generated_digest(generated, items, stored_targets)

        assert [e.headline for e in draft.items] == ["Critical", "Low"]
        assert draft.items[0].target_id == "t-tirz"
        assert draft.items[0].category == Category.TRIAL_UPDATE
        assert draft.items[0].raw_item_ids == [items[1].id]
        assert (draft.critical_count, draft.low_count) == (1, 1)
        assert draft.strategy == "generative"

    def test_unknown_values_map_to_defaults(self, db, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item("1", "A")])
        items = db.raw_items_for_run(run.id)
        generated = GeneratedDigest(items=[
            GeneratedDigestItem(target_name="nobody", category="rumor", significance="huge",
                                headline="X", source_indices=[0]),
        ])

        entry = assemble_generated_digest(generated, items, stored_targets).items[0]

        assert entry.category == Category.NEWS
        assert entry.significance == Significance.LOW
        assert entry.target_id == "t-sema"


# =============================================================================
# SYNTHESIZER
# =============================================================================

class TestSynthesizer:

    def test_identical_digest_is_suppressed(self, db, config, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item("1", "Phase 2 trial begins")])
        synthesizer = DigestSynthesizer(db, config)

        first = asyncio.run(synthesizer.synthesize(run.id, Period.DAILY, stored_targets))
        second = asyncio.run(synthesizer.synthesize(run.id, Period.DAILY, stored_targets))

        assert first is not None
        assert first.fingerprint == compute_fingerprint(
            [i.id for i in db.raw_items_for_run(run.id)]
        )
        assert second is None
        assert len(db.recent_digest_runs()) == 1

    def test_empty_weekly_digest_always_stored(self, db, config, stored_targets):
        run = db.create_scan_run(Period.WEEKLY, ScanMode.LATEST, ["t-sema"], ["pubmed"])
        synthesizer = DigestSynthesizer(db, config)

        first = asyncio.run(synthesizer.synthesize(run.id, Period.WEEKLY, stored_targets))
        second = asyncio.run(synthesizer.synthesize(run.id, Period.WEEKLY, stored_targets))

        assert first.fingerprint is None
        assert second is not None
        assert first.executive_summary == "No new sources this period."

    def test_generator_output_is_persisted(self, db, config, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item("1", "Readout"), make_item("2", "Filing")])
        messages = []

        async def generator(message):
            messages.append(message)
            return GeneratedDigest(
                executive_summary="One grouped development.",
                items=[GeneratedDigestItem(
                    target_name="Ozempic", significance="high", headline="Readout and filing",
                    synthesis="Both sources describe the same program.", source_indices=[0, 1],
                )],
            )

        digest = asyncio.run(
            DigestSynthesizer(db, config, generator=generator).synthesize(run.id, Period.DAILY, stored_targets)
        )

        assert digest.strategy == "generative"
        assert digest.high_count == 1
        assert digest.total_signals == 2
        stored = db.digest_items(digest.id)
        assert len(stored) == 1 and len(stored[0].sources) == 2
        assert "trial discontinuations only" in messages[0]

    def test_failed_generation_falls_back(self, db, config, stored_targets, make_item):
        run = _ingest(db, make_item, [make_item("1", "Readout")])

        async def broken(message):
            raise RuntimeError("model unavailable")

        digest = asyncio.run(
            DigestSynthesizer(db, config, generator=broken).synthesize(run.id, Period.DAILY, stored_targets)
        )

        assert digest.strategy == "deterministic"
        assert digest.low_count == 1

    def test_report_written_when_enabled(self, db, config, stored_targets, make_item):
        config.save_digest_reports = True
        run = _ingest(db, make_item, [make_item("1", "Readout", abstract="Topline results were positive.")])

        asyncio.run(DigestSynthesizer(db, config).synthesize(run.id, Period.DAILY, stored_targets))

        reports = list(config.reports_dir.glob("*.md"))
        assert len(reports) == 1
        assert "Topline results were positive." in reports[0].read_text()
