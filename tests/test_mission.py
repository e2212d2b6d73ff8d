"""
Unit tests for mission building and digest markdown rendering.
"""

from mission import GENERIC_GOAL, build_mission
from models.digest import (
    Category,
    DigestItem,
    DigestRun,
    FeedbackExample,
    FeedbackSet,
    Significance,
    SourceRef,
)
from models.scan import Period, ScanMode
from notifications import format_category, render_digest_markdown


class TestMission:

    def test_goals_per_target(self, semaglutide, tirzepatide):
        mission = build_mission(Period.DAILY, ScanMode.LATEST, [semaglutide, tirzepatide])

        assert "What to monitor (user-defined focus per target):" in mission
        assert "- Ozempic: trial discontinuations only" in mission
        assert f"- Mounjaro: {GENERIC_GOAL}" in mission
        assert "Find new signals for a daily digest" in mission
        assert "Focus on recent and relevant items." in mission

    def test_comprehensive_weekly(self, semaglutide):
        mission = build_mission(Period.WEEKLY, ScanMode.COMPREHENSIVE, [semaglutide])
        assert "weekly digest" in mission
        assert "Comprehensive search." in mission

    def test_feedback_section(self, semaglutide):
        feedback = FeedbackSet(
            good=[FeedbackExample(target_name="Ozempic", headline="Trial halted", snippet="Futility")],
            bad=[FeedbackExample(headline="Stock tips")],
        )

        mission = build_mission(Period.DAILY, ScanMode.LATEST, [semaglutide], feedback)

        assert 'Favored (find more like these):\n- [Ozempic] "Trial halted" / Futility' in mission
        assert 'Rejected (avoid similar items):\n- "Stock tips"' in mission

    def test_no_feedback_section_without_ratings(self, semaglutide):
        mission = build_mission(Period.DAILY, ScanMode.LATEST, [semaglutide], FeedbackSet())
        assert "User feedback" not in mission


class TestDigestMarkdown:

    def test_render(self, semaglutide):
        run = DigestRun(
            id="d1",
            period=Period.WEEKLY,
            executive_summary="One critical development.",
            total_signals=1,
            critical_count=1,
            generated_at=1736157600,
        )
        item = DigestItem(
            id="i1",
            digest_run_id="d1",
            target_id="t-sema",
            raw_item_ids=["r1"],
            category=Category.TRIAL_UPDATE,
            significance=Significance.CRITICAL,
            headline="Phase 3 trial terminated",
            synthesis="The sponsor stopped enrollment.",
            strategic_implication="Competitor window widens.",
            sources=[SourceRef(title="NCT05000001", url="https://ct.test/1", source="clinicaltrials",
                               date="Trial start: Mar 1, 2024")],
        )

        markdown = render_digest_markdown(run, [item], [semaglutide])

        assert markdown.startswith("# Weekly digest\n")
        assert "### 🔴 Phase 3 trial terminated" in markdown
        assert "*Trial Update | Ozempic | critical*" in markdown
        assert "**Implication:** Competitor window widens." in markdown
        assert "- [NCT05000001](https://ct.test/1) [clinicaltrials] (Trial start: Mar 1, 2024)" in markdown

    def test_format_category(self):
        assert format_category(Category.TRIAL_UPDATE) == "Trial Update"
