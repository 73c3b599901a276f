"""Content KPI Engine — Pipeline Orchestrator.

Scores a batch of already-fetched pages for one project:

  started → for each unit: extract → rules (limiter + budget) → aggregate
          → persist → progress → completed

Units are processed one after another so progress events follow unit
order. The rules of one unit run concurrently under the orchestrator's
ConcurrencyLimiter. A unit that fails is marked unanalyzed and the loop
moves on; only failures outside the loop (the page list cannot be read)
abort the run with pipeline.failed.

Budget state is never reset here. The caller resets the BudgetManager
between runs.
"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.parse import urlparse

from content_kpi.budget.manager import BudgetManager
from content_kpi.config import DimensionConfig
from content_kpi.database.models import PageRecord
from content_kpi.errors import (
    BatchFatalError,
    BudgetExceeded,
    CircuitBreakerTripped,
    UnitAnalysisError,
)
from content_kpi.extraction.signals import BrandContext, SignalExtractor
from content_kpi.rules.base import Rule, RuleContext, RuleResult, degraded_result
from content_kpi.rules.registry import RuleRegistry
from content_kpi.scoring.aggregator import (
    CompositeScore,
    ConditionalAggregator,
    DimensionScore,
    WeightedAggregator,
    compute_composite,
)
from content_kpi.utils.limiter import ConcurrencyLimiter
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Event names ──────────────────────────────────────────
EVENT_STARTED = "pipeline.started"
EVENT_PROGRESS = "pipeline.progress"
EVENT_COMPLETED = "pipeline.completed"
EVENT_FAILED = "pipeline.failed"


class RunStatus(str, enum.Enum):
    """Lifecycle of a PipelineRun."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineEvent:
    """One progress notification.

    Attributes:
        name: pipeline.started | progress | completed | failed.
        run_id: Run the event belongs to.
        processed: Units scored successfully so far.
        total: Units in the run.
        current_unit: Unit just handled (progress events only).
        error: Failure message (failed events only).
    """

    name: str
    run_id: str
    processed: int
    total: int
    current_unit: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "runId": self.run_id,
            "processed": self.processed,
            "total": self.total,
        }
        if self.current_unit is not None:
            data["currentUnit"] = self.current_unit
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PipelineRun:
    """State and outcome of one pipeline run.

    Attributes:
        run_id: Short unique id.
        project_id: Project being scored.
        total: Number of units.
        processed: Units scored and persisted.
        unanalyzed: Ids of units that failed.
        status: IDLE → RUNNING → COMPLETED | FAILED.
        events: Every emitted event, in emission order.
        scores: Unit id → CompositeScore for processed units.
        error: Fatal error message when FAILED.
    """

    run_id: str
    project_id: str
    total: int = 0
    processed: int = 0
    unanalyzed: list[str] = field(default_factory=list)
    status: RunStatus = RunStatus.IDLE
    events: list[PipelineEvent] = field(default_factory=list)
    scores: dict[str, CompositeScore] = field(default_factory=dict)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def summary(self) -> dict[str, Any]:
        """Counts for logs and reports."""
        return {
            "run_id": self.run_id,
            "project_id": self.project_id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "unanalyzed": len(self.unanalyzed),
            "duration_seconds": round(self.duration_seconds, 1),
        }


@dataclass(frozen=True)
class _Unit:
    """One page (or one domain) to score.

    A domain unit is scored from its first page; member_urls lists every
    stored page of the domain.
    """

    unit_id: str
    page: PageRecord
    scope: str = "page"
    member_urls: tuple[str, ...] = ()


class PipelineOrchestrator:
    """Runs the scoring pipeline over a batch of pages.

    Attributes:
        registry: Rules to evaluate.
        extractor: SignalExtractor for page content.
        budget: BudgetManager guarding LLM-backed rules.
        store: Page source / score sink (optional when pages are passed in).
        limiter: ConcurrencyLimiter owned by this orchestrator.
        dimensions: Dimension name → DimensionConfig.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        extractor: SignalExtractor,
        budget: BudgetManager,
        store: Any = None,
        *,
        limiter: Optional[ConcurrencyLimiter] = None,
        concurrency: int = 3,
        dimensions: Optional[Mapping[str, DimensionConfig]] = None,
        event_sink: Optional[Callable[[PipelineEvent], None]] = None,
        clean_content_length: int = 8000,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Rules to evaluate.
            extractor: SignalExtractor for page content.
            budget: BudgetManager guarding LLM-backed rules.
            store: Object with list_pages/get_brand/upsert/mark_processed/
                mark_unanalyzed, plus mark_domain_processed/
                mark_domain_unanalyzed for domain runs (None = no
                persistence). Domain scores are stored under the domain
                root, e.g. https://example.com.
            limiter: Limiter to use (a private one is created if None).
            concurrency: Capacity of the private limiter.
            dimensions: Dimension weights and aggregators. Registry
                dimensions not listed use the weighted aggregator, weight 1.
            event_sink: Callback receiving every PipelineEvent.
            clean_content_length: Max characters of clean text per page.
        """
        self.registry = registry
        self.extractor = extractor
        self.budget = budget
        self.store = store
        self.limiter = limiter or ConcurrencyLimiter(concurrency, name="rules")
        self.dimensions: dict[str, DimensionConfig] = dict(dimensions or {})
        self.event_sink = event_sink
        self.clean_content_length = clean_content_length
        self._weighted = WeightedAggregator()
        self._conditional = ConditionalAggregator()

    # ── Public API ───────────────────────────────────────

    async def run(
        self,
        project_id: str,
        pages: Optional[Sequence[PageRecord]] = None,
        brand: Optional[BrandContext] = None,
        execution_scope: str = "page",
    ) -> PipelineRun:
        """Score every unit of a project.

        Args:
            project_id: Project being scored.
            pages: Pages to score (read from the store when None).
            brand: Brand context (read from the store when None).
            execution_scope: 'page' scores each page; 'domain' scores one
                representative page per domain with domain-scope rules.

        Returns:
            The completed PipelineRun.

        Raises:
            BatchFatalError: If the units cannot be enumerated. The failed
                run is attached as error.run and pipeline.failed is emitted.
        """
        run = PipelineRun(run_id=uuid.uuid4().hex[:12], project_id=project_id)
        run.status = RunStatus.RUNNING
        started = time.monotonic()

        try:
            if pages is None:
                if self.store is None:
                    raise BatchFatalError("No pages given and no page source configured")
                pages = await self.store.list_pages(project_id)
            if brand is None and self.store is not None:
                brand = await self.store.get_brand(project_id)
            units = self._build_units(pages, execution_scope)
        except Exception as e:
            run.status = RunStatus.FAILED
            run.error = str(e)
            run.duration_seconds = time.monotonic() - started
            self._emit(run, EVENT_FAILED, error=run.error)
            logger.error("Pipeline %s for %s failed: %s", run.run_id, project_id, e)
            if isinstance(e, BatchFatalError):
                e.run = run
                raise
            raise BatchFatalError(f"Cannot enumerate units for {project_id}: {e}", run=run) from e

        run.total = len(units)
        logger.info(
            "═══ Pipeline %s starting: project %s, %d %s unit(s) ═══",
            run.run_id, project_id, run.total, execution_scope,
        )
        self._emit(run, EVENT_STARTED)

        for i, unit in enumerate(units, 1):
            try:
                score = await self._process_unit(project_id, unit, brand, execution_scope)
            except Exception as e:
                run.unanalyzed.append(unit.unit_id)
                logger.error("  [%d/%d] %s unanalyzed: %s", i, run.total, unit.unit_id, e)
                await self._mark_unanalyzed(project_id, unit, str(e))
            else:
                run.processed += 1
                run.scores[unit.unit_id] = score
                logger.info(
                    "  [%d/%d] %s → %d", i, run.total, unit.unit_id, score.global_score,
                )
            self._emit(run, EVENT_PROGRESS, current_unit=unit.unit_id)

        run.status = RunStatus.COMPLETED
        run.duration_seconds = time.monotonic() - started
        self._emit(run, EVENT_COMPLETED)

        logger.info("═══ Pipeline %s complete ═══", run.run_id)
        logger.info(
            "  Processed: %d/%d | Unanalyzed: %d | Spend: $%.4f | Time: %.1fs",
            run.processed, run.total, len(run.unanalyzed),
            self.budget.state.session_spend, run.duration_seconds,
        )
        return run

    async def reanalyze(
        self,
        project_id: str,
        page: PageRecord,
        brand: Optional[BrandContext] = None,
    ) -> CompositeScore:
        """Score and persist a single page outside of a batch run.

        Raises:
            UnitAnalysisError: If the page cannot be scored or stored; the
                page is marked unanalyzed first.
        """
        if brand is None and self.store is not None:
            brand = await self.store.get_brand(project_id)
        unit = _Unit(unit_id=page.url, page=page, member_urls=(page.url,))
        try:
            return await self._process_unit(project_id, unit, brand, "page")
        except UnitAnalysisError as e:
            await self._mark_unanalyzed(project_id, unit, str(e))
            raise

    async def score_context(self, context: RuleContext, execution_scope: str = "page") -> CompositeScore:
        """Evaluate and aggregate every applicable rule for one context.

        Raises:
            UnitAnalysisError: If any rule raises.
        """
        dimension_names = list(self.dimensions)
        for name in self.registry.dimensions():
            if name not in self.dimensions:
                dimension_names.append(name)

        plan: list[tuple[str, list[Rule]]] = [
            (name, self.registry.get_rules_for_dimension(name, context, execution_scope))
            for name in dimension_names
        ]
        rules = [rule for _, dim_rules in plan for rule in dim_rules]

        futures = [self.limiter.submit(self._evaluate_rule, rule, context) for rule in rules]
        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        for rule, outcome in zip(rules, outcomes):
            if isinstance(outcome, BaseException):
                raise UnitAnalysisError(
                    context.url, f"rule {rule.id} failed: {outcome}", stage="rules",
                ) from outcome
        by_rule = {rule.id: outcome for rule, outcome in zip(rules, outcomes)}

        scores: dict[str, DimensionScore] = {}
        for name, dim_rules in plan:
            results = [by_rule[rule.id] for rule in dim_rules]
            scores[name] = self._aggregate(name, dim_rules, results)

        weights = {name: self._dimension(name).weight for name in dimension_names}
        return compute_composite(scores, weights)

    # ── Internals ────────────────────────────────────────

    def _dimension(self, name: str) -> DimensionConfig:
        return self.dimensions.get(name) or DimensionConfig(name=name, weight=1.0, aggregator="weighted")

    def _aggregate(
        self, dimension: str, rules: Sequence[Rule], results: Sequence[RuleResult]
    ) -> DimensionScore:
        if self._dimension(dimension).aggregator == "conditional":
            return self._conditional.aggregate(
                dimension, [(r, rule.gate_threshold) for rule, r in zip(rules, results)]
            )
        return self._weighted.aggregate(dimension, results)

    async def _evaluate_rule(self, rule: Rule, context: RuleContext) -> RuleResult:
        """Run one rule, degrading LLM-backed rules the budget refuses.

        The breaker is checked before the budget.
        """
        if rule.requires_invoker:
            try:
                self.budget.check_breaker()
                self.budget.check_can_proceed(rule.estimate_cost(context))
            except CircuitBreakerTripped as e:
                logger.info("Skipping %s for %s: %s", rule.id, context.url, e)
                return degraded_result(rule, "breaker", str(e))
            except BudgetExceeded as e:
                logger.info("Skipping %s for %s: %s", rule.id, context.url, e.reason)
                return degraded_result(rule, "budget", e.reason)
        return await rule.evaluate(context)

    def _build_units(self, pages: Sequence[PageRecord], execution_scope: str) -> list[_Unit]:
        """Pages as units; for domain scope, the first page of each domain."""
        if execution_scope == "page":
            return [_Unit(unit_id=p.url, page=p, member_urls=(p.url,)) for p in pages]
        if execution_scope == "domain":
            grouped: dict[str, list[PageRecord]] = {}
            for page in pages:
                parsed = urlparse(page.url)
                root = f"{parsed.scheme}://{parsed.netloc.lower()}"
                grouped.setdefault(root, []).append(page)
            return [
                _Unit(
                    unit_id=root,
                    page=members[0],
                    scope="domain",
                    member_urls=tuple(p.url for p in members),
                )
                for root, members in grouped.items()
            ]
        raise BatchFatalError(f"Unknown execution scope '{execution_scope}'")

    def _build_context(
        self, project_id: str, page: PageRecord, brand: Optional[BrandContext]
    ) -> RuleContext:
        metadata = {**page.metadata, "url": page.url}
        try:
            signals = self.extractor.extract(page.content, metadata, brand)
            clean = self.extractor.get_clean_content(
                page.content, max_length=self.clean_content_length
            )
        except Exception as e:
            raise UnitAnalysisError(page.url, f"extraction failed: {e}", stage="extraction") from e

        return RuleContext(
            project_id=project_id,
            url=page.url,
            content=page.content,
            signals=signals,
            clean_content=clean,
            metadata=metadata,
            category=page.category,
            brand=brand,
            status_code=page.status_code,
            fetched_at=page.fetched_at or datetime.now(timezone.utc),
        )

    async def _process_unit(
        self,
        project_id: str,
        unit: _Unit,
        brand: Optional[BrandContext],
        execution_scope: str,
    ) -> CompositeScore:
        context = self._build_context(project_id, unit.page, brand)
        score = await self.score_context(context, execution_scope)

        if self.store is not None:
            try:
                for dimension_score in score.dimensions.values():
                    await self.store.upsert(project_id, unit.unit_id, dimension_score)
                await self.store.upsert(project_id, unit.unit_id, score)
                if unit.scope == "domain":
                    await self.store.mark_domain_processed(
                        project_id, unit.unit_id, unit.member_urls
                    )
                else:
                    await self.store.mark_processed(project_id, unit.unit_id)
            except Exception as e:
                raise UnitAnalysisError(
                    unit.unit_id, f"persistence failed: {e}", stage="persistence",
                ) from e
        return score

    async def _mark_unanalyzed(self, project_id: str, unit: _Unit, reason: str) -> None:
        """Record a unit failure in the store; a failure here is only logged."""
        if self.store is None:
            return
        try:
            if unit.scope == "domain":
                await self.store.mark_domain_unanalyzed(
                    project_id, unit.unit_id, unit.member_urls, reason
                )
            else:
                await self.store.mark_unanalyzed(project_id, unit.unit_id, reason)
        except Exception as e:
            logger.warning("Could not mark %s unanalyzed: %s", unit.unit_id, e)

    def _emit(
        self,
        run: PipelineRun,
        name: str,
        current_unit: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        event = PipelineEvent(
            name=name,
            run_id=run.run_id,
            processed=run.processed,
            total=run.total,
            current_unit=current_unit,
            error=error,
        )
        run.events.append(event)
        if self.event_sink is None:
            return
        try:
            self.event_sink(event)
        except Exception as e:
            logger.warning("Event sink failed on %s: %s", name, e)
