"""PydanticAI agents for the Compass scan pipeline.

RelevanceFilter:
    Batch yes/no judgment of candidate items against each target's
    monitoring goal. Without a model credential every item passes.

SummaryEnricher:
    One factual sentence per item that arrived without an abstract.

DigestWriter:
    Generative digest synthesis over the run's new items.

run_search_agent:
    Agentic provider search used by the source adapters.

Example:
    >>> from agents import RelevanceFilter
    >>> relevance = RelevanceFilter(config)
    >>> kept = await relevance.filter(items, targets)
"""

from agents.digest_writer import DigestWriter
from agents.enrichment import SummaryEnricher
from agents.llm import create_model
from agents.relevance import RelevanceFilter
from agents.search import run_search_agent

__all__ = [
    "DigestWriter",
    "SummaryEnricher",
    "create_model",
    "RelevanceFilter",
    "run_search_agent",
]
