"""Source adapters and their registry.

Every adapter implements the same contract (SourceContext in, SourceResult
out); the orchestrator looks them up by source id.

Example:
    >>> from sources import build_adapters
    >>> adapters = build_adapters(config, ["pubmed", "clinicaltrials"])
"""

from typing import Iterable

from config import Config
from errors import InvalidScanRequest
from sources.base import Collector, Credentials, SourceAdapter, SourceContext
from sources.clinicaltrials import ClinicalTrialsAdapter
from sources.edgar import EdgarAdapter
from sources.exa import ExaAdapter
from sources.openfda import OpenFdaAdapter
from sources.patents import PatentsAdapter
from sources.pubmed import PubMedAdapter
from sources.rss import RssAdapter

SOURCE_REGISTRY: dict[str, type[SourceAdapter]] = {
    adapter.source_id: adapter
    for adapter in (
        PubMedAdapter,
        ClinicalTrialsAdapter,
        EdgarAdapter,
        ExaAdapter,
        OpenFdaAdapter,
        RssAdapter,
        PatentsAdapter,
    )
}

ALL_SOURCE_IDS: tuple[str, ...] = tuple(SOURCE_REGISTRY)


def validate_sources(sources: Iterable[str] | None) -> list[str]:
    """Resolve a requested source subset, preserving registry order.

    Raises:
        InvalidScanRequest: If any id is not registered
    """
    if sources is None:
        return list(ALL_SOURCE_IDS)
    requested = list(sources)
    unknown = [s for s in requested if s not in SOURCE_REGISTRY]
    if unknown:
        raise InvalidScanRequest(f"Unknown source(s): {', '.join(unknown)}")
    return [s for s in ALL_SOURCE_IDS if s in requested]


def build_adapters(config: Config, sources: Iterable[str] | None = None) -> dict[str, SourceAdapter]:
    """Instantiate adapters for the given source ids (all by default)."""
    return {source_id: SOURCE_REGISTRY[source_id](config) for source_id in validate_sources(sources)}


__all__ = [
    "ALL_SOURCE_IDS",
    "SOURCE_REGISTRY",
    "Collector",
    "Credentials",
    "SourceAdapter",
    "SourceContext",
    "build_adapters",
    "validate_sources",
]
