"""Generative digest writer.

Given a bounded excerpt of each new item plus the targets' monitoring goals,
the digest model writes an executive summary and grouped entries that point
back at the input items by index. Validation of those indices and fallback
to the deterministic digest live in `digest.py`; this module only produces
the structured output.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from pydantic_ai import Agent

from agents.llm import create_model, structured_output
from config import Config
from models.digest import FeedbackSet, GeneratedDigest
from models.scan import Period

logger = logging.getLogger(__name__)

MAX_ENTRIES = 20
FEEDBACK_EXAMPLES = 10
FEEDBACK_SNIPPET_CHARS = 120


DIGEST_PROMPT = """You are a competitive intelligence analyst for biopharma.

Given the new items from a scan, produce a structured digest:
- executive_summary: 2-3 sentences. Total signals and the 1-2 most important developments.
- items: group items that describe the same event. For each group give
  target_name (exact display name from the items), category
  (trial_update | publication | regulatory | filing | news | conference),
  significance (critical | high | medium | low), a crisp headline leading with
  the event, a 2-4 sentence synthesis, an optional 1-2 sentence strategic
  implication, and source_indices referencing the input items.

Judge significance against each target's monitoring goal. Limit to 20 items."""


@dataclass
class DigestSource:
    """One new item as shown to the digest model."""

    index: int
    source: str
    target_name: str
    title: str
    url: str
    content: str


Generator = Callable[[str], Awaitable[GeneratedDigest]]


def feedback_block(feedback: FeedbackSet | None) -> str:
    """Prompt section listing rated digest items, empty without feedback."""
    if not feedback:
        return ""
    good = "\n".join(
        f'- "{ex.headline}" / {ex.snippet[:FEEDBACK_SNIPPET_CHARS]}...'
        for ex in feedback.good[:FEEDBACK_EXAMPLES]
    )
    bad = "\n".join(
        f'- "{ex.headline}" / {ex.snippet[:FEEDBACK_SNIPPET_CHARS]}...'
        for ex in feedback.bad[:FEEDBACK_EXAMPLES]
    )
    return (
        "Learn from user feedback. Users marked these digest items as RELEVANT "
        f"(emulate this style and relevance):\n{good or '- (none)'}\n\n"
        "Users marked these as NOT RELEVANT (avoid similar: wrong therapeutic context, "
        f"off-target organism, or noise):\n{bad or '- (none)'}\n\n"
    )


def build_user_message(
    sources: Sequence[DigestSource],
    period: Period,
    goals: dict[str, str],
    feedback: FeedbackSet | None = None,
    today: datetime | None = None,
) -> str:
    """Render the digest request: feedback, date, goals, then the items as JSON."""
    today = today or datetime.now(timezone.utc)
    goal_lines = "\n".join(f"- {name}: {goal}" for name, goal in goals.items())
    payload = [
        {
            "index": s.index,
            "source": s.source,
            "target": s.target_name,
            "title": s.title,
            "url": s.url,
            "content": s.content,
        }
        for s in sources
    ]
    return (
        f"{feedback_block(feedback)}"
        f"Today's date: {today.date().isoformat()}\n"
        f"Period: {period.value}\n\n"
        f"Monitoring goals:\n{goal_lines or '- (none)'}\n\n"
        f"New items (index, source, target, title, url, content):\n"
        f"{json.dumps(payload, indent=2)}"
    )


class DigestWriter:
    """Calls the digest model and returns its structured output.

    Example:
        >>> writer = DigestWriter(config)
        >>> generated = await writer.write(message)
    """

    def __init__(self, config: Config):
        self.config = config
        self._agent: Agent[None, GeneratedDigest] | None = None

    def _get_agent(self) -> Agent[None, GeneratedDigest]:
        if self._agent is None:
            model = self.config.digest_model
            self._agent = Agent(
                create_model(model, self.config),
                output_type=structured_output(model, GeneratedDigest),
                system_prompt=DIGEST_PROMPT,
                retries=2,
            )
        return self._agent

    async def write(self, message: str) -> GeneratedDigest:
        """Run the digest model on a rendered message.

        Raises:
            Exception: Any model or validation failure; callers fall back
        """
        result = await self._get_agent().run(message)
        logger.info(
            "Digest generated | entries=%d requests=%d",
            len(result.output.items), result.usage().requests,
        )
        return result.output
