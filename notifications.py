"""Digest output: markdown rendering and report files.

Each persisted digest can be rendered to markdown (also used by the CLI
`digest` command) and, when SAVE_DIGEST_REPORTS is on, written to the
reports directory.

Saving fails gracefully: errors are logged and never affect the scan run.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from models.digest import Category, DigestItem, DigestRun, Significance
from models.target import WatchTarget

logger = logging.getLogger(__name__)

SIGNIFICANCE_MARKERS = {
    Significance.CRITICAL: "🔴",
    Significance.HIGH: "🟠",
    Significance.MEDIUM: "🟡",
    Significance.LOW: "⚪",
}


def format_category(category: Category) -> str:
    """'trial_update' -> 'Trial Update'."""
    return " ".join(part.capitalize() for part in category.value.split("_"))


def _tag(value: str | None) -> str | None:
    """Normalize a label for filenames."""
    if not value:
        return None
    tag = re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")
    return tag or None


def _build_digest_filename(timestamp: str, period: str | None) -> str:
    tag = _tag(period)
    if tag:
        return f"{timestamp}_{tag}_digest.md"
    return f"{timestamp}_digest.md"


def render_digest_markdown(
    run: DigestRun,
    items: Sequence[DigestItem],
    targets: Sequence[WatchTarget] = (),
) -> str:
    """Render a digest run and its items as markdown."""
    names = {t.id: t.label for t in targets}
    generated = datetime.fromtimestamp(run.generated_at, tz=timezone.utc)

    lines = [
        f"# {run.period.value.capitalize()} digest",
        "",
        f"**Generated:** {generated.strftime('%Y-%m-%d %H:%M')} UTC",
        f"**Signals:** {run.total_signals} "
        f"(critical {run.critical_count}, high {run.high_count}, "
        f"medium {run.medium_count}, low {run.low_count})",
        "",
        "## Executive summary",
        "",
        run.executive_summary,
    ]

    for item in items:
        marker = SIGNIFICANCE_MARKERS.get(item.significance, "")
        target = names.get(item.target_id, item.target_id)
        lines.extend([
            "",
            "---",
            "",
            f"### {marker} {item.headline}".replace("  ", " "),
            "",
            f"*{format_category(item.category)} | {target} | {item.significance.value}*",
            "",
            item.synthesis,
        ])
        if item.strategic_implication:
            lines.extend(["", f"**Implication:** {item.strategic_implication}"])
        if item.sources:
            lines.append("")
            for ref in item.sources:
                date = f" ({ref.date})" if ref.date else ""
                link = f"[{ref.title}]({ref.url})" if ref.url else ref.title
                lines.append(f"- {link} [{ref.source}]{date}")

    return "\n".join(lines) + "\n"


def save_digest_report(
    digest_markdown: str,
    reports_dir: Path,
    period: str | None = None,
) -> Path | None:
    """Write a digest markdown file; None if it could not be written."""
    try:
        reports_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = reports_dir / _build_digest_filename(timestamp, period)
        filepath.write_text(digest_markdown, encoding="utf-8")
        logger.info("Digest saved | file=%s", filepath.name)
        return filepath
    except OSError as e:
        logger.error("Digest save failed: %s", e, exc_info=True)
        return None
