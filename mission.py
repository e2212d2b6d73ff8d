"""Shared mission string for a scan run.

The mission is handed to every source adapter. It folds in the scan depth,
each target's monitoring goal, and, when users have rated past items, a
summary of what they favored and rejected.
"""

from typing import Sequence

from models.digest import FeedbackExample, FeedbackSet
from models.scan import Period, ScanMode
from models.target import WatchTarget

GENERIC_GOAL = "general updates (trials, filings, news, publications)"
FEEDBACK_LINES = 10


def _example_line(example: FeedbackExample) -> str:
    prefix = f"[{example.target_name}] " if example.target_name else ""
    snippet = f" / {example.snippet}" if example.snippet else ""
    return f"- {prefix}\"{example.headline}\"{snippet}"


def feedback_section(feedback: FeedbackSet | None) -> str:
    """Render rated examples as mission guidance, empty without feedback."""
    if not feedback:
        return ""
    parts = ["User feedback on earlier results for these targets:"]
    if feedback.good:
        parts.append("Favored (find more like these):")
        parts.extend(_example_line(ex) for ex in feedback.good[:FEEDBACK_LINES])
    if feedback.bad:
        parts.append("Rejected (avoid similar items):")
        parts.extend(_example_line(ex) for ex in feedback.bad[:FEEDBACK_LINES])
    return "\n".join(parts) + "\n\n"


def build_mission(
    period: Period,
    mode: ScanMode,
    targets: Sequence[WatchTarget],
    feedback: FeedbackSet | None = None,
) -> str:
    """Build the mission for one scan run.

    Args:
        period: Digest cadence the scan feeds
        mode: latest or comprehensive
        targets: Targets being scanned
        feedback: Recent good/bad ratings for those targets

    Returns:
        Natural-language goal shared by every adapter
    """
    scope = (
        "Comprehensive search."
        if mode == ScanMode.COMPREHENSIVE
        else "Focus on recent and relevant items."
    )
    goals = "\n".join(
        f"- {t.label}: {t.notes.strip() or GENERIC_GOAL}" for t in targets
    )
    goal_block = f"What to monitor (user-defined focus per target):\n{goals}\n\n" if goals else ""
    return (
        f"{goal_block}{feedback_section(feedback)}"
        f"Find new signals for a {period.value} digest for the watch targets above. "
        "Only surface items that clearly help answer what the user wants to monitor for "
        "each target. Include trials, publications, SEC filings, patents, and news when "
        f"relevant. {scope} Use the tools available to you to search and retrieve items "
        "that match."
    )
