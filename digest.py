"""Digest synthesis.

This module turns the items newly ingested by a scan run into a persisted
DigestRun, or into nothing when an identical report already exists.

Strategies:
    Generative: the digest model groups up to 20 items into ranked entries
    (see agents/digest_writer.py). Entries citing no valid item are dropped.

    Deterministic: one entry per item (first 50), category from the item's
    source, significance medium. Used without a model key, for empty input,
    and whenever generation fails or yields no usable entry.

Duplicate suppression:
    The fingerprint is SHA-256 over the sorted, comma-joined raw item ids of
    every entry. A digest whose fingerprint is already stored is discarded.
    A digest with no items (a quiet weekly period) has no fingerprint and is
    always stored.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Sequence

from agents.digest_writer import (
    MAX_ENTRIES,
    DigestSource,
    DigestWriter,
    Generator,
    build_user_message,
)
from config import Config
from database import Database
from models.digest import (
    Category,
    DigestDraft,
    DigestItemDraft,
    DigestRun,
    GeneratedDigest,
    Significance,
    SourceRef,
    normalize_category,
    normalize_significance,
)
from models.items import RawItem
from models.scan import Period
from models.target import WatchTarget
from notifications import render_digest_markdown, save_digest_report
from observability.tracing import trace_operation

logger = logging.getLogger(__name__)

NO_SUMMARY_PLACEHOLDER = "No additional summary available."
DETERMINISTIC_ITEM_LIMIT = 50
GENERATIVE_ITEM_LIMIT = 20
EXCERPT_CHARS = 800
FEEDBACK_LIMIT = 10
FEEDBACK_SNIPPET_CHARS = 120

# Equivalence thresholds
MIN_COMPARE_LENGTH = 10
JACCARD_THRESHOLD = 0.85
CONTAINMENT_DELTA = 50

SOURCE_CATEGORIES: dict[str, Category] = {
    "edgar": Category.FILING,
    "pubmed": Category.PUBLICATION,
    "clinicaltrials": Category.TRIAL_UPDATE,
    "exa": Category.NEWS,
    "openfda": Category.REGULATORY,
    "rss": Category.NEWS,
    "patents": Category.PUBLICATION,
}

SOURCE_DATE_LABELS: dict[str, str] = {
    "pubmed": "Pub date",
    "clinicaltrials": "Trial start",
    "edgar": "Filed",
}

SIGNIFICANCE_RANK = {
    Significance.CRITICAL: 0,
    Significance.HIGH: 1,
    Significance.MEDIUM: 2,
    Significance.LOW: 3,
}


def category_for_source(source: str) -> Category:
    return SOURCE_CATEGORIES.get(source, Category.NEWS)


def format_date(value: datetime) -> str:
    """Format as 'Jan 5, 2025'."""
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def _parse_loose_date(value: str) -> datetime | None:
    """Parse 'YYYY-MM-DD...', 'YYYY-MM' or 'YYYY'."""
    value = value.strip()
    for fmt, width in (("%Y-%m-%d", 10), ("%Y-%m", 7), ("%Y", 4)):
        try:
            return datetime.strptime(value[:width], fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def format_source_date(
    source: str,
    published_at: datetime | None,
    metadata: dict[str, Any] | None,
) -> str | None:
    """Human-facing date label such as 'Trial start: Mar 1, 2024'.

    Prefers the provider's own pubdate string, then an ISO startDate or
    publishedDate from metadata, then the item's published timestamp.
    """
    label = SOURCE_DATE_LABELS.get(source, "Published")
    metadata = metadata or {}
    pubdate = metadata.get("pubdate")
    if pubdate:
        return f"{label}: {pubdate}"
    iso = metadata.get("startDate") or metadata.get("publishedDate")
    if iso:
        parsed = _parse_loose_date(str(iso))
        if parsed:
            return f"{label}: {format_date(parsed)}"
    if published_at is not None:
        return f"{label}: {format_date(published_at)}"
    return None


def normalize_for_compare(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").lower().strip())


def synthesis_equivalent_to_headline(headline: str, synthesis: str) -> bool:
    """True when a synthesis would just repeat the headline.

    Equivalent means: identical after case/whitespace normalization, or
    (both at least 10 chars) word Jaccard similarity >= 0.85, or one
    contains the other with a length difference under 50 chars.
    """
    h = normalize_for_compare(headline)
    t = normalize_for_compare(synthesis)
    if h == t:
        return True
    if len(h) < MIN_COMPARE_LENGTH or len(t) < MIN_COMPARE_LENGTH:
        return False

    h_words, t_words = set(h.split()), set(t.split())
    union = h_words | t_words
    if not union:
        return False
    if len(h_words & t_words) / len(union) >= JACCARD_THRESHOLD:
        return True

    shorter, longer = (h, t) if len(h) <= len(t) else (t, h)
    return shorter in longer and len(longer) - len(shorter) < CONTAINMENT_DELTA


def compute_fingerprint(raw_item_ids: Sequence[str]) -> str:
    """SHA-256 hex digest of the sorted, comma-joined raw item ids."""
    return hashlib.sha256(",".join(sorted(raw_item_ids)).encode("utf-8")).hexdigest()


def source_ref(item: RawItem) -> SourceRef:
    return SourceRef(
        title=item.title,
        url=item.url,
        source=item.source,
        date=format_source_date(item.source, item.published_at, item.metadata),
    )


def build_deterministic_digest(items: Sequence[RawItem]) -> DigestDraft:
    """One medium-significance entry per item, first 50 items."""
    entries = []
    for item in items[:DETERMINISTIC_ITEM_LIMIT]:
        headline = item.title
        synthesis = (item.abstract or item.full_text or item.title or "").strip() or item.title
        if synthesis_equivalent_to_headline(headline, synthesis):
            synthesis = NO_SUMMARY_PLACEHOLDER
        entries.append(DigestItemDraft(
            target_id=item.target_id,
            raw_item_ids=[item.id],
            category=category_for_source(item.source),
            significance=Significance.MEDIUM,
            headline=headline,
            synthesis=synthesis,
            sources=[source_ref(item)],
        ))

    count = len(entries)
    summary = (
        "No new sources this period."
        if count == 0
        else f"{count} new source{'' if count == 1 else 's'} this period."
    )
    # Counts are reported as low even though entries carry medium
    return DigestDraft(
        executive_summary=summary,
        items=entries,
        low_count=count,
        strategy="deterministic",
    )


def assemble_generated_digest(
    generated: GeneratedDigest,
    items: Sequence[RawItem],
    targets: Sequence[WatchTarget],
) -> DigestDraft:
    """Validate model output against the input items.

    Out-of-range indices are dropped, as are entries left with none.
    Unknown target names fall back to the first item's target. Entries are
    ranked by significance, keeping model order within a level.
    """
    by_name: dict[str, str] = {}
    for t in targets:
        by_name.setdefault(t.label.lower(), t.id)
        by_name.setdefault(t.name.lower(), t.id)
    fallback_target = items[0].target_id if items else None

    entries: list[DigestItemDraft] = []
    for entry in generated.items[:MAX_ENTRIES]:
        indices = [i for i in dict.fromkeys(entry.source_indices) if 0 <= i < len(items)]
        if not indices:
            logger.debug("Digest entry dropped, no valid indices | headline=%s", entry.headline[:60])
            continue
        target_id = by_name.get(entry.target_name.strip().lower(), fallback_target)
        entries.append(DigestItemDraft(
            target_id=target_id,
            raw_item_ids=[items[i].id for i in indices],
            category=normalize_category(entry.category),
            significance=normalize_significance(entry.significance),
            headline=entry.headline.strip() or "Update",
            synthesis=entry.synthesis.strip(),
            strategic_implication=(entry.strategic_implication or "").strip() or None,
            sources=[source_ref(items[i]) for i in indices],
        ))

    entries.sort(key=lambda e: SIGNIFICANCE_RANK[e.significance])
    counts = {level: 0 for level in Significance}
    for e in entries:
        counts[e.significance] += 1

    return DigestDraft(
        executive_summary=generated.executive_summary.strip() or "No summary generated.",
        items=entries,
        critical_count=counts[Significance.CRITICAL],
        high_count=counts[Significance.HIGH],
        medium_count=counts[Significance.MEDIUM],
        low_count=counts[Significance.LOW],
        strategy="generative",
    )


class DigestSynthesizer:
    """Builds, fingerprints, and persists the digest for a scan run.

    Example:
        >>> synthesizer = DigestSynthesizer(db, config)
        >>> run = await synthesizer.synthesize(scan_run_id, Period.DAILY, targets)
        >>> run is None  # suppressed duplicate
    """

    def __init__(self, db: Database, config: Config, generator: Generator | None = None):
        """Initialize the synthesizer.

        Args:
            db: Persisted store
            config: Application configuration
            generator: Optional replacement for the digest model; receives the
                       rendered message and returns a GeneratedDigest
        """
        self.db = db
        self.config = config
        self._generator = generator
        self._writer: DigestWriter | None = None

    @property
    def generative(self) -> bool:
        return self._generator is not None or self.config.llm_enabled

    async def _generate(self, message: str) -> GeneratedDigest:
        if self._generator is not None:
            return await self._generator(message)
        if self._writer is None:
            self._writer = DigestWriter(self.config)
        return await self._writer.write(message)

    async def build(
        self,
        items: Sequence[RawItem],
        period: Period,
        targets: Sequence[WatchTarget],
    ) -> DigestDraft:
        """Produce a draft digest, generative when possible."""
        if not items or not self.generative:
            return build_deterministic_digest(items)

        selected = list(items[:GENERATIVE_ITEM_LIMIT])
        names = {t.id: t.label for t in targets}
        sources = [
            DigestSource(
                index=i,
                source=item.source,
                target_name=names.get(item.target_id, "Unknown"),
                title=item.title,
                url=item.url,
                content=(item.abstract or item.full_text or item.title)[:EXCERPT_CHARS],
            )
            for i, item in enumerate(selected)
        ]
        goals = {t.label: t.monitoring_goal for t in targets}
        feedback = self.db.feedback_examples(
            limit=FEEDBACK_LIMIT,
            snippet_chars=FEEDBACK_SNIPPET_CHARS,
            include_raw_items=False,
        )

        try:
            generated = await self._generate(build_user_message(sources, period, goals, feedback))
        except Exception as e:
            logger.error("Digest generation failed, using deterministic digest | error=%s", e, exc_info=True)
            return build_deterministic_digest(items)

        draft = assemble_generated_digest(generated, selected, targets)
        if not draft.items:
            logger.warning("Generated digest had no usable entries, using deterministic digest")
            return build_deterministic_digest(items)
        return draft

    async def synthesize(
        self,
        scan_run_id: str,
        period: Period,
        targets: Sequence[WatchTarget],
    ) -> DigestRun | None:
        """Synthesize and persist the digest for a run's new items.

        Returns:
            The persisted DigestRun, or None when an identical digest exists
        """
        with trace_operation("digest", {"scan_run_id": scan_run_id}) as span:
            items = self.db.raw_items_for_run(scan_run_id, new_only=True)
            draft = await self.build(items, period, targets)

            raw_ids = draft.raw_item_ids
            fingerprint = compute_fingerprint(raw_ids) if raw_ids else None
            if fingerprint and self.db.digest_run_by_fingerprint(fingerprint):
                logger.info(
                    "Digest suppressed, identical report exists | run=%s fingerprint=%s",
                    scan_run_id, fingerprint[:12],
                )
                span["suppressed"] = True
                return None

            run = self.db.save_digest(draft, period, fingerprint, scan_run_id=scan_run_id)
            if run is None:
                span["suppressed"] = True
                return None

            span["entries"] = len(draft.items)
            logger.info(
                "Digest saved | id=%s strategy=%s entries=%d critical=%d high=%d medium=%d low=%d",
                run.id, run.strategy, len(draft.items),
                run.critical_count, run.high_count, run.medium_count, run.low_count,
            )

        if self.config.save_digest_reports:
            markdown = render_digest_markdown(run, self.db.digest_items(run.id), targets)
            save_digest_report(markdown, self.config.reports_dir, period.value)
        return run
