"""Relevance filter for candidate items.

This module implements the RelevanceFilter, which asks a fast model whether
each candidate item clearly serves its watch target's monitoring goal and
drops the items that do not, before they are ever persisted.

Design Philosophy:
    - Strict: the model is told to answer false when in doubt
    - Batched: items are judged in batches of 12, one batch at a time
    - Fail-open: a failed batch is kept whole; without a credential the
      filter is the identity function

The judging step is injectable (`judge=`), so tests and offline runs can
swap in a deterministic predicate.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from pydantic_ai import Agent

from agents.llm import create_model, structured_output
from config import Config
from models.items import CandidateItem
from models.judgments import RelevanceVerdicts
from models.target import WatchTarget
from tools.text import collapse_whitespace

logger = logging.getLogger(__name__)

BATCH_SIZE = 12
SNIPPET_CHARS = 350
UNKNOWN_TARGET_GOAL = "general updates"


RELEVANCE_PROMPT = """You filter search results for a biopharma competitive-intelligence monitor.

Each item comes with the user's monitoring goal for the watch target it was found for.
Decide, for every item, whether it CLEARLY helps answer that goal.

Rules:
- Answer true only when the title or snippet directly concerns the goal.
- Generic mentions, unrelated indications, listicles, and passing references are false.
- When in doubt, answer false.

Return exactly one boolean per item, in the order given."""


@dataclass
class RelevanceQuery:
    """One item as presented to the judge."""

    goal: str
    title: str
    snippet: str


Judge = Callable[[list[RelevanceQuery]], Awaitable[Sequence[bool]]]


def build_queries(
    items: Sequence[CandidateItem],
    targets: Sequence[WatchTarget],
) -> list[RelevanceQuery]:
    """Pair each item with its target's monitoring goal and a short snippet."""
    by_id = {t.id: t for t in targets}
    queries = []
    for item in items:
        target = by_id.get(item.target_id)
        goal = target.monitoring_goal if target else UNKNOWN_TARGET_GOAL
        snippet = collapse_whitespace(item.snippet_source)[:SNIPPET_CHARS]
        queries.append(RelevanceQuery(goal=goal, title=item.title, snippet=snippet))
    return queries


def build_user_message(queries: Sequence[RelevanceQuery]) -> str:
    """Render a batch as numbered goal/title/snippet blocks."""
    blocks = []
    for i, q in enumerate(queries):
        blocks.append(
            f"[{i}] Goal: {q.goal}\nTitle: {q.title}\nSnippet: {q.snippet or '(none)'}"
        )
    return (
        f"Judge these {len(queries)} items.\n\n"
        + "\n\n".join(blocks)
        + f"\n\nReturn `relevant` with exactly {len(queries)} booleans."
    )


def _create_agent(model: str, config: Config) -> Agent[None, RelevanceVerdicts]:
    """Create the underlying PydanticAI agent for relevance judging."""
    return Agent(
        create_model(model, config),
        output_type=structured_output(model, RelevanceVerdicts),
        system_prompt=RELEVANCE_PROMPT,
        retries=2,
    )


class RelevanceFilter:
    """Drops candidate items that do not serve their target's goal.

    Example:
        >>> relevance = RelevanceFilter(config)
        >>> kept = await relevance.filter(items, targets)
    """

    def __init__(self, config: Config, judge: Judge | None = None):
        """Initialize the filter.

        Args:
            config: Application configuration
            judge: Optional replacement for the model call; receives one batch
                   and returns one boolean per query
        """
        self.config = config
        self._judge = judge
        self._agent: Agent[None, RelevanceVerdicts] | None = None

    @property
    def enabled(self) -> bool:
        return self._judge is not None or self.config.llm_enabled

    async def _judge_with_model(self, queries: list[RelevanceQuery]) -> list[bool]:
        if self._agent is None:
            self._agent = _create_agent(self.config.relevance_model, self.config)
        result = await self._agent.run(build_user_message(queries))
        usage = result.usage()
        logger.debug(
            "Relevance batch judged | items=%d kept=%d requests=%d",
            len(queries), sum(result.output.relevant), usage.requests,
        )
        return result.output.relevant

    async def filter(
        self,
        items: list[CandidateItem],
        targets: Sequence[WatchTarget],
    ) -> list[CandidateItem]:
        """Return the items judged relevant, in their original order.

        A missing verdict counts as not relevant. A batch whose judging
        raised is passed through unchanged.
        """
        if not items or not self.enabled:
            return items

        judge = self._judge or self._judge_with_model
        kept: list[CandidateItem] = []
        for start in range(0, len(items), BATCH_SIZE):
            batch = items[start:start + BATCH_SIZE]
            queries = build_queries(batch, targets)
            try:
                verdicts = list(await judge(queries))
            except Exception as e:
                logger.error(
                    "Relevance judging failed, keeping batch | size=%d error=%s",
                    len(batch), e, exc_info=True,
                )
                kept.extend(batch)
                continue
            if len(verdicts) != len(batch):
                logger.warning(
                    "Relevance verdict count mismatch | expected=%d got=%d",
                    len(batch), len(verdicts),
                )
            kept.extend(
                item for i, item in enumerate(batch)
                if i < len(verdicts) and verdicts[i] is True
            )

        logger.info("Relevance filter | in=%d kept=%d", len(items), len(kept))
        return kept
