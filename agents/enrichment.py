"""Summary enrichment for items that arrive without an abstract.

Items lacking an abstract (EDGAR filings, bare RSS headlines, some trials)
get one factual sentence written from their title and any available text,
so the digest has something to show besides the headline.
"""

import logging
from typing import Awaitable, Callable, Sequence

from pydantic_ai import Agent

from agents.llm import create_model, structured_output
from config import Config
from models.items import CandidateItem
from models.judgments import BatchSummaries
from tools.text import collapse_whitespace

logger = logging.getLogger(__name__)

BATCH_SIZE = 8
SNIPPET_CHARS = 400

ENRICHMENT_PROMPT = """You write one-sentence factual summaries of biopharma search results.

For each item write exactly one sentence (at most 40 words) stating what the item is
and what it reports. Use only the title and snippet; never speculate or add facts.
Return one summary per item, in the order given."""

Summarizer = Callable[[list[CandidateItem], str], Awaitable[Sequence[str]]]


def needs_summary(item: CandidateItem) -> bool:
    return not item.abstract.strip()


def build_user_message(items: Sequence[CandidateItem], source: str) -> str:
    blocks = []
    for i, item in enumerate(items):
        snippet = collapse_whitespace(item.full_text)[:SNIPPET_CHARS]
        blocks.append(f"[{i}] Title: {item.title}\nSnippet: {snippet or '(none)'}")
    return (
        f"Source type: {source}\n\n"
        + "\n\n".join(blocks)
        + f"\n\nReturn `summaries` with exactly {len(items)} sentences."
    )


class SummaryEnricher:
    """Fills in missing abstracts with one generated sentence.

    Example:
        >>> enricher = SummaryEnricher(config)
        >>> items = await enricher.enrich(items, source="edgar")
    """

    def __init__(self, config: Config, summarizer: Summarizer | None = None):
        """Initialize the enricher.

        Args:
            config: Application configuration
            summarizer: Optional replacement for the model call; receives one
                        batch and the source id, returns one sentence per item
        """
        self.config = config
        self._summarizer = summarizer
        self._agent: Agent[None, BatchSummaries] | None = None

    @property
    def enabled(self) -> bool:
        return self._summarizer is not None or self.config.llm_enabled

    async def _summarize_with_model(self, items: list[CandidateItem], source: str) -> list[str]:
        if self._agent is None:
            model = self.config.enrichment_model
            self._agent = Agent(
                create_model(model, self.config),
                output_type=structured_output(model, BatchSummaries),
                system_prompt=ENRICHMENT_PROMPT,
                retries=2,
            )
        result = await self._agent.run(build_user_message(items, source))
        return result.output.summaries

    async def enrich(self, items: list[CandidateItem], source: str) -> list[CandidateItem]:
        """Return items with generated abstracts where theirs was empty.

        Input order is preserved. Items with an abstract, and items whose
        batch failed or whose summary came back empty, are returned unchanged.
        """
        if not items or not self.enabled:
            return items

        pending = [i for i, item in enumerate(items) if needs_summary(item)]
        if not pending:
            return items

        summarize = self._summarizer or self._summarize_with_model
        enriched = list(items)
        filled = 0
        for start in range(0, len(pending), BATCH_SIZE):
            positions = pending[start:start + BATCH_SIZE]
            batch = [items[p] for p in positions]
            try:
                summaries = list(await summarize(batch, source))
            except Exception as e:
                logger.error(
                    "Summary enrichment failed | source=%s size=%d error=%s",
                    source, len(batch), e, exc_info=True,
                )
                continue
            for position, summary in zip(positions, summaries):
                summary = (summary or "").strip()
                if summary:
                    enriched[position] = items[position].model_copy(update={"abstract": summary})
                    filled += 1

        logger.info("Summary enrichment | source=%s missing=%d filled=%d", source, len(pending), filled)
        return enriched
