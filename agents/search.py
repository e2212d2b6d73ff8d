"""Bounded tool-calling search loop used by the source adapters.

An adapter hands the search model a set of tools that call its provider's
API. Every tool records what it found into the shared Collector held in the
run's deps; the model's final text answer is ignored. The loop is bounded by
`UsageLimits(request_limit=max_steps)`, so whether the model stops on its own
or runs out of steps, the adapter reads the same collected items afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import aiohttp
from pydantic_ai import Agent, RunContext, UsageLimits
from pydantic_ai.exceptions import UsageLimitExceeded

from agents.llm import create_model
from config import Config

logger = logging.getLogger(__name__)

SEARCH_PROMPT = """You are a research assistant collecting evidence for a biopharma monitoring digest.

Use the tools to find items that match the mission. Every item a tool returns is
saved automatically; you do not need to repeat results back. Prefer a few precise
queries over many broad ones, skip results already known, and stop as soon as the
watch targets are covered. Finish with a one-line note of what you searched."""


@dataclass
class SearchDeps:
    """Runtime context handed to every search tool.

    Attributes:
        adapter: The source adapter whose API helpers the tools call
        context: The adapter's SourceContext (targets, mode, credentials)
        session: Open aiohttp session for this adapter run
        collector: Accumulates candidate items across tool calls
        errors: Transient failures observed by tools
    """

    adapter: Any
    context: Any
    session: aiohttp.ClientSession
    collector: Any
    errors: list[str] = field(default_factory=list)


async def run_search_agent(
    config: Config,
    *,
    source: str,
    instructions: str,
    prompt: str,
    tools: Sequence[Any],
    deps: SearchDeps,
    max_steps: int,
) -> None:
    """Let the search model drive an adapter's tools for at most max_steps requests.

    Failures of the model itself are logged and swallowed: whatever the tools
    collected before the failure stays in deps.collector.

    Args:
        config: Application configuration (model, API key)
        source: Source id, for logging
        instructions: Source-specific instructions appended to the base prompt
        prompt: The user message (mission plus target list)
        tools: Tool functions taking RunContext[SearchDeps] first
        deps: Shared run state
        max_steps: Model request budget
    """
    agent: Agent[SearchDeps, str] = Agent(
        create_model(config.search_model, config),
        deps_type=SearchDeps,
        output_type=str,
        system_prompt=f"{SEARCH_PROMPT}\n\n{instructions}",
        tools=list(tools),
        retries=1,
    )

    @agent.system_prompt
    def known_ids(ctx: RunContext[SearchDeps]) -> str:
        known = len(ctx.deps.context.existing_external_ids)
        return f"{known} items from this source are already stored; new items matter most."

    try:
        result = await agent.run(
            prompt,
            deps=deps,
            usage_limits=UsageLimits(request_limit=max_steps),
        )
        logger.info(
            "Search agent finished | source=%s requests=%d items=%d",
            source, result.usage().requests, len(deps.collector),
        )
    except UsageLimitExceeded:
        logger.info(
            "Search agent step budget reached | source=%s steps=%d items=%d",
            source, max_steps, len(deps.collector),
        )
    except Exception as e:
        logger.warning(
            "Search agent failed | source=%s items=%d error=%s",
            source, len(deps.collector), e, exc_info=True,
        )
