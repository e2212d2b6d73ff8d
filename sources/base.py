"""Source adapter contract shared by every provider.

An adapter receives a SourceContext and returns a SourceResult. The base
class owns everything the providers have in common:

    - Credential gate: a missing credential yields an empty result, not an error
    - Session: one aiohttp session per adapter run, never shared
    - Strategy: agentic search first (when a model key is set), procedural
      search when that collected nothing
    - Partial success: items collected before a transient failure are kept
      and returned alongside the error string
    - Isolation: a failing feed or per-target request is recorded and the
      search moves on to the next one
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence

import aiohttp

from agents.search import SearchDeps, run_search_agent
from config import Config
from errors import TransientNetworkError
from models.items import CandidateItem, SourceResult
from models.scan import ScanMode
from models.target import WatchTarget
from tools.retry import HttpResponse, fetch_with_retry
from tools.utils import open_session

logger = logging.getLogger(__name__)

LATEST_TERMS_PER_TARGET = 3


@dataclass
class Credentials:
    """Per-provider credentials handed to the adapters."""

    openai_api_key: str = ""
    exa_api_key: str = ""
    pubmed_api_key: str = ""
    patentsview_api_key: str = ""
    sec_user_agent: str = ""

    @classmethod
    def from_config(cls, config: Config) -> "Credentials":
        return cls(
            openai_api_key=config.openai_api_key,
            exa_api_key=config.exa_api_key,
            pubmed_api_key=config.pubmed_api_key,
            patentsview_api_key=config.patentsview_api_key,
            sec_user_agent=config.sec_user_agent,
        )


@dataclass
class SourceContext:
    """Everything an adapter needs for one run.

    Attributes:
        mission: Shared natural-language goal for the scan
        targets: Watch targets to search for (never empty when run)
        credentials: Provider credentials
        mode: latest or comprehensive
        existing_external_ids: Ids this source has already stored
    """

    mission: str
    targets: list[WatchTarget]
    credentials: Credentials
    mode: ScanMode = ScanMode.LATEST
    existing_external_ids: set[str] = field(default_factory=set)

    @property
    def comprehensive(self) -> bool:
        return self.mode == ScanMode.COMPREHENSIVE


def assign_target(text: str, targets: Sequence[WatchTarget]) -> str:
    """Heuristically attribute a result to a watch target.

    The first target whose name, display name, or alias occurs in the text
    (case-insensitive) wins; otherwise the first target.
    """
    haystack = (text or "").lower()
    for target in targets:
        for term in target.search_terms:
            if term.lower() in haystack:
                return target.id
    return targets[0].id


def terms_for(target: WatchTarget, mode: ScanMode) -> list[str]:
    """Search terms for a target: the first three in latest mode, all otherwise."""
    terms = target.search_terms
    if mode == ScanMode.COMPREHENSIVE:
        return terms
    return terms[:LATEST_TERMS_PER_TARGET]


def describe_targets(targets: Sequence[WatchTarget]) -> str:
    """Target list rendered for search prompts."""
    lines = []
    for t in targets:
        extra = []
        if t.aliases:
            extra.append(f"aliases: {', '.join(t.aliases)}")
        if t.company:
            extra.append(f"company: {t.company}")
        if t.indication:
            extra.append(f"indication: {t.indication}")
        suffix = f" ({'; '.join(extra)})" if extra else ""
        lines.append(f"- id={t.id} {t.label} [{t.type.value}]{suffix}")
    return "\n".join(lines)


class Collector:
    """Accumulates candidate items for one adapter run.

    Deduplicates by external id. Items not yet stored are listed before
    already-known ones.
    """

    def __init__(self, targets: Sequence[WatchTarget], known_ids: set[str]):
        self._targets = list(targets)
        self._target_ids = {t.id for t in targets}
        self._known = known_ids
        self._items: dict[str, CandidateItem] = {}

    def add(self, item: CandidateItem) -> bool:
        """Add an item; False if its external id was already collected."""
        if not item.external_id or item.external_id in self._items:
            return False
        if item.target_id not in self._target_ids:
            item = item.model_copy(update={"target_id": assign_target(item.title, self._targets)})
        self._items[item.external_id] = item
        return True

    def is_known(self, external_id: str) -> bool:
        return external_id in self._known

    def items(self) -> list[CandidateItem]:
        fresh = [i for i in self._items.values() if i.external_id not in self._known]
        known = [i for i in self._items.values() if i.external_id in self._known]
        return fresh + known

    def __len__(self) -> int:
        return len(self._items)


def summarize_added(collector: Collector, added: Sequence[CandidateItem]) -> dict[str, Any]:
    """Tool response describing what a search call contributed."""
    return {
        "count": len(added),
        "new": sum(1 for item in added if not collector.is_known(item.external_id)),
        "items": [
            {"external_id": item.external_id, "title": item.title[:160]}
            for item in added[:10]
        ],
    }


class SourceAdapter(ABC):
    """Base class for one external data provider.

    Subclasses set `source_id`, optionally `credential` (a Credentials
    attribute that must be non-empty), the per-mode result limits, and the
    agent `tools`, and implement `procedural_search`.
    """

    source_id: ClassVar[str]
    credential: ClassVar[str | None] = None
    latest_limit: ClassVar[int] = 5
    comprehensive_limit: ClassVar[int] = 20
    throttle: ClassVar[float] = 0.0  # seconds before each request
    max_steps: ClassVar[int] = 5
    tools: ClassVar[tuple] = ()
    instructions: ClassVar[str] = ""

    def __init__(self, config: Config):
        self.config = config

    def has_credentials(self, context: SourceContext) -> bool:
        if not self.credential:
            return True
        return bool(getattr(context.credentials, self.credential, ""))

    def limit(self, context: SourceContext) -> int:
        return self.comprehensive_limit if context.comprehensive else self.latest_limit

    def session_headers(self, context: SourceContext) -> dict[str, str]:
        """Default headers for this adapter's session."""
        return {}

    async def run(self, context: SourceContext) -> SourceResult:
        """Search the provider for the context's targets.

        Returns:
            Collected items; `error` is set when a transient failure cut the
            search short
        """
        if not context.targets:
            return SourceResult()
        if not self.has_credentials(context):
            logger.debug("Source skipped, no credentials | source=%s", self.source_id)
            return SourceResult()

        collector = Collector(context.targets, context.existing_external_ids)
        errors: list[str] = []
        async with open_session(self.session_headers(context)) as session:
            try:
                if context.credentials.openai_api_key and self.tools:
                    await self._agent_search(context, session, collector, errors)
                if not len(collector):
                    await self.procedural_search(context, session, collector, errors)
            except TransientNetworkError as e:
                errors.append(str(e))
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
                errors.append(f"{self.source_id}: {type(e).__name__}: {e}")

        error = "; ".join(dict.fromkeys(errors)) or None
        items = collector.items()
        if error:
            logger.warning(
                "Source finished with errors | source=%s items=%d error=%s",
                self.source_id, len(items), error,
            )
        else:
            logger.info("Source finished | source=%s items=%d", self.source_id, len(items))
        return SourceResult(items=items, error=error)

    async def _agent_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        deps = SearchDeps(
            adapter=self,
            context=context,
            session=session,
            collector=collector,
            errors=errors,
        )
        depth = "comprehensive (go deep, use every alias)" if context.comprehensive else "latest (recent, focused)"
        prompt = (
            f"{context.mission}\n\nSearch mode: {depth}. "
            f"Result limit per call: {self.limit(context)}.\n\n"
            f"Watch targets:\n{describe_targets(context.targets)}"
        )
        await run_search_agent(
            self.config,
            source=self.source_id,
            instructions=self.instructions,
            prompt=prompt,
            tools=self.tools,
            deps=deps,
            max_steps=self.max_steps,
        )

    @abstractmethod
    async def procedural_search(
        self,
        context: SourceContext,
        session: aiohttp.ClientSession,
        collector: Collector,
        errors: list[str],
    ) -> None:
        """Single-shot search used without a model key or when the agent found nothing.

        Each feed or per-target request should go through `isolated` so one
        failing request does not end the search; its message lands in `errors`.
        """

    async def isolated(self, errors: list[str], coro: Any, default: Any = ()) -> Any:
        """Await one request unit, recording a transient failure instead of raising.

        Returns:
            The awaited value, or `default` when the unit failed
        """
        try:
            return await coro
        except TransientNetworkError as e:
            logger.warning("Request unit failed, continuing | source=%s error=%s", self.source_id, e)
            errors.append(str(e))
            return default

    async def fetch(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        method: str = "GET",
        throttle: float | None = None,
        **kwargs: Any,
    ) -> HttpResponse:
        """Send a request through the retry utility.

        Args:
            throttle: Overrides the adapter's default pre-request delay

        Returns:
            The response; non-2xx statuses other than 429/5xx are returned
            for the caller to skip

        Raises:
            TransientNetworkError: If the last response was 429/5xx or every
                attempt timed out
        """
        resp = await fetch_with_retry(
            session,
            url,
            method=method,
            retries_429_503=self.config.retries_429_503,
            retries_5xx=self.config.retries_5xx,
            initial_backoff=self.config.retry_initial_backoff,
            throttle=self.throttle if throttle is None else throttle,
            timeout=self.config.request_timeout_seconds,
            **kwargs,
        )
        if resp.retryable:
            raise TransientNetworkError(
                f"{self.source_id}: HTTP {resp.status} after retries", status=resp.status
            )
        if not resp.ok:
            logger.debug("Request rejected | source=%s status=%d url=%s", self.source_id, resp.status, url)
        return resp


async def guarded_tool(deps: SearchDeps, coro: Any) -> dict[str, Any]:
    """Await a tool body, turning transient failures into a tool message."""
    try:
        return await coro
    except TransientNetworkError as e:
        deps.errors.append(str(e))
        return {"count": 0, "error": str(e)}
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
        message = f"{deps.adapter.source_id}: {type(e).__name__}: {e}"
        deps.errors.append(message)
        return {"count": 0, "error": message}
