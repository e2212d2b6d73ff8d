"""Scan orchestration.

This module coordinates one scan run from request to digest:

Run Flow:
    1. VALIDATE: reject unknown sources before any side effect
    2. RESOLVE: explicit targets, or every active target (optionally per user)
    3. RUN: create the ScanRun (or resume a pre-created one) with a pending
       SourceStatus per source; zero targets completes immediately
    4. MISSION: scan depth + monitoring goals + recent feedback
    5. FAN OUT: every adapter runs concurrently, each under a wall-clock budget
    6. PER SOURCE: relevance filter -> summary enrichment -> dedup ingest ->
       SourceStatus completed / failed / skipped
    7. COMPLETE: aggregate totals onto the ScanRun
    8. DIGEST: when anything new was ingested, or always for weekly scans

Failure Isolation:
    A source that raises, times out, or reports an error only fails its own
    SourceStatus; its partial items are still ingested. Anything that breaks
    the run itself marks the ScanRun failed and propagates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from agents.enrichment import SummaryEnricher
from agents.relevance import RelevanceFilter
from config import Config
from database import Database
from digest import DigestSynthesizer
from errors import InvalidScanRequest
from mission import build_mission
from models.items import SourceResult
from models.scan import Period, RunStatus, ScanRequest, ScanResult, ScanRun, SourceState
from models.target import WatchTarget
from observability.logging import clear_context, set_run_context, set_source_context
from observability.tracing import ScanTracer, setup_tracing, trace_operation
from sources import SourceAdapter, build_adapters
from sources.base import Credentials, SourceContext

logger = logging.getLogger(__name__)

MISSION_FEEDBACK_LIMIT = 25
MISSION_FEEDBACK_SNIPPET_CHARS = 200


@dataclass
class SourceOutcome:
    """What one source contributed to a run.

    Attributes:
        candidates: Items the adapter returned
        kept: Items that survived the relevance filter
        new: Items actually inserted
        error: Adapter or processing error, if any
        skipped: The adapter had no credentials
    """

    source: str
    candidates: int = 0
    kept: int = 0
    new: int = 0
    error: str | None = None
    skipped: bool = False

    @property
    def state(self) -> SourceState:
        if self.skipped:
            return SourceState.SKIPPED
        return SourceState.FAILED if self.error else SourceState.COMPLETED


class Orchestrator:
    """Runs scans: adapters in parallel, then filter, enrich, ingest, digest.

    Every collaborator is injectable so tests can substitute fakes.

    Example:
        >>> orchestrator = Orchestrator(config, db)
        >>> result = await orchestrator.run(ScanRequest(period=Period.DAILY))
        >>> result.new_found
        4
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        adapters: dict[str, SourceAdapter] | None = None,
        relevance: RelevanceFilter | None = None,
        enricher: SummaryEnricher | None = None,
        synthesizer: DigestSynthesizer | None = None,
    ):
        self.config = config
        self.db = db
        self.adapters = adapters if adapters is not None else build_adapters(config)
        self.relevance = relevance or RelevanceFilter(config)
        self.enricher = enricher or SummaryEnricher(config)
        self.synthesizer = synthesizer or DigestSynthesizer(db, config)

        if config.enable_logfire:
            setup_tracing(enabled=True, service_name="compass", token=config.logfire_token)

    def select_sources(self, requested: Sequence[str] | None) -> list[str]:
        """Resolve the source subset in registry order.

        Raises:
            InvalidScanRequest: If a requested source is unknown
        """
        if requested is None:
            return list(self.adapters)
        unknown = [s for s in requested if s not in self.adapters]
        if unknown:
            raise InvalidScanRequest(f"Unknown source(s): {', '.join(unknown)}")
        return [s for s in self.adapters if s in requested]

    def resolve_targets(self, request: ScanRequest) -> list[WatchTarget]:
        if request.target_ids is not None:
            return self.db.get_targets(request.target_ids)
        return self.db.list_targets(user_id=request.user_id, active_only=True)

    def _open_run(self, request: ScanRequest, targets: list[WatchTarget], sources: list[str]) -> ScanRun:
        target_ids = [t.id for t in targets]
        if request.scan_run_id:
            run = self.db.get_scan_run(request.scan_run_id)
            if run is not None:
                self.db.ensure_source_statuses(run.id, sources)
                self.db.update_scan_run(run.id, target_ids=target_ids, mode=request.mode)
                return run
        return self.db.create_scan_run(
            request.period, request.mode, target_ids, sources, run_id=request.scan_run_id
        )

    async def run(self, request: ScanRequest) -> ScanResult:
        """Execute one scan run.

        Args:
            request: Period, target scope, mode, source subset

        Returns:
            Run id, aggregate counts, failed sources, and the digest id if one
            was persisted

        Raises:
            InvalidScanRequest: Unknown source ids (nothing is written)
        """
        sources = self.select_sources(request.sources)
        targets = self.resolve_targets(request)
        run = self._open_run(request, targets, sources)
        set_run_context(run.id)

        try:
            if not targets:
                self.db.update_scan_run(
                    run.id,
                    status=RunStatus.COMPLETED,
                    sources_completed=len(sources),
                    items_found=0,
                    new_found=0,
                )
                logger.info("Scan skipped, no watch targets | run=%s", run.id)
                return ScanResult(scan_run_id=run.id, message="No watch targets")

            return await self._execute(run, request, targets, sources)
        except Exception as e:
            logger.error("Scan failed | run=%s error=%s", run.id, e, exc_info=True)
            self.db.update_scan_run(run.id, status=RunStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise
        finally:
            clear_context()

    async def _execute(
        self,
        run: ScanRun,
        request: ScanRequest,
        targets: list[WatchTarget],
        sources: list[str],
    ) -> ScanResult:
        tracer = ScanTracer(run.id)
        logger.info(
            "Scan started | run=%s period=%s mode=%s targets=%d sources=%d",
            run.id, request.period.value, request.mode.value, len(targets), len(sources),
        )
        self.db.update_scan_run(run.id, status=RunStatus.RUNNING)

        with trace_operation("scan_run", {"scan_run_id": run.id, "period": request.period.value}) as span:
            target_ids = [t.id for t in targets]
            feedback = self.db.feedback_examples(
                target_ids,
                limit=MISSION_FEEDBACK_LIMIT,
                snippet_chars=MISSION_FEEDBACK_SNIPPET_CHARS,
            )
            mission = build_mission(request.period, request.mode, targets, feedback)
            existing = self.db.existing_external_ids(sources)
            credentials = Credentials.from_config(self.config)

            tasks = [
                self._process_source(
                    run.id,
                    source,
                    SourceContext(
                        mission=mission,
                        targets=targets,
                        credentials=credentials,
                        mode=request.mode,
                        existing_external_ids=existing.get(source, set()),
                    ),
                )
                for source in sources
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

            outcomes: list[SourceOutcome] = []
            for source, result in zip(sources, results):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    logger.error("Source task crashed | source=%s error=%s", source, result)
                    outcome = SourceOutcome(source, error=f"{type(result).__name__}: {result}")
                    self.db.set_source_status(run.id, source, outcome.state, error=outcome.error)
                else:
                    outcome = result
                outcomes.append(outcome)
                tracer.record_source(source, outcome.candidates, outcome.kept, outcome.new, outcome.error)

            new_found = sum(o.new for o in outcomes)
            failed = [o.source for o in outcomes if o.state == SourceState.FAILED]
            self.db.update_scan_run(
                run.id,
                status=RunStatus.COMPLETED,
                sources_completed=len(sources),
                items_found=new_found,
                new_found=new_found,
            )
            span["new_found"] = new_found
            span["failed_sources"] = len(failed)

        digest_run_id = None
        if new_found > 0 or request.period == Period.WEEKLY:
            digest_run_id = await self._synthesize(run.id, request.period, targets, tracer)

        summary = tracer.get_summary()
        logger.info(
            "Scan done | run=%s new=%d candidates=%d failed=%s digest=%s duration=%.1fs",
            run.id, new_found, summary["candidates"], ",".join(failed) or "-",
            digest_run_id or "-", summary["duration_seconds"],
        )
        return ScanResult(
            scan_run_id=run.id,
            total_found=new_found,
            new_found=new_found,
            failed_sources=failed,
            digest_run_id=digest_run_id,
        )

    async def _process_source(self, run_id: str, source: str, context: SourceContext) -> SourceOutcome:
        """Adapter -> relevance -> enrichment -> ingest for one source."""
        set_source_context(source)
        adapter = self.adapters[source]
        self.db.set_source_status(run_id, source, SourceState.RUNNING)

        with trace_operation("source", {"source": source}) as span:
            if not adapter.has_credentials(context):
                outcome = SourceOutcome(source, skipped=True)
            else:
                try:
                    outcome = await self._collect_and_ingest(run_id, source, adapter, context)
                except Exception as e:
                    logger.error("Source processing failed | source=%s error=%s", source, e, exc_info=True)
                    outcome = SourceOutcome(source, error=f"{source}: {type(e).__name__}: {e}")
            span.update(candidates=outcome.candidates, new=outcome.new, state=outcome.state.value)

        self.db.set_source_status(
            run_id, source, outcome.state, items_found=outcome.new, error=outcome.error
        )
        logger.info(
            "Source done | source=%s state=%s candidates=%d kept=%d new=%d",
            source, outcome.state.value, outcome.candidates, outcome.kept, outcome.new,
        )
        return outcome

    async def _collect_and_ingest(
        self,
        run_id: str,
        source: str,
        adapter: SourceAdapter,
        context: SourceContext,
    ) -> SourceOutcome:
        timeout = self.config.source_timeout_seconds
        try:
            result = await asyncio.wait_for(adapter.run(context), timeout=timeout)
        except asyncio.TimeoutError:
            result = SourceResult(error=f"{source}: timed out after {timeout}s")

        kept = await self.relevance.filter(result.items, context.targets)
        enriched = await self.enricher.enrich(kept, source)
        inserted = self.db.insert_raw_items(run_id, source, enriched)
        return SourceOutcome(
            source,
            candidates=len(result.items),
            kept=len(kept),
            new=len(inserted),
            error=result.error,
        )

    async def _synthesize(
        self,
        run_id: str,
        period: Period,
        targets: list[WatchTarget],
        tracer: ScanTracer,
    ) -> str | None:
        try:
            digest = await self.synthesizer.synthesize(run_id, period, targets)
        except Exception as e:
            logger.error("Digest synthesis failed | run=%s error=%s", run_id, e, exc_info=True)
            return None
        tracer.record_digest(digest.id if digest else None, suppressed=digest is None)
        return digest.id if digest else None
