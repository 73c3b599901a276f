"""Content KPI Engine — Main Service.

Ties all components together: config, database, reasoning service,
budget manager, rule registry and the scoring pipeline.

Runs on a schedule with APScheduler:
  - Analysis cycle (every N minutes): score every page, then every domain,
    of every project

Usage:
    python -m content_kpi.main
    python scripts/run.py
"""

from __future__ import annotations

import asyncio
import signal
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from content_kpi.analyzer.ai_client import AIClient
from content_kpi.budget.manager import BudgetManager
from content_kpi.config import AppConfig, load_config
from content_kpi.database.db import Database
from content_kpi.database.models import PageRecord
from content_kpi.database.store import SQLiteScoreStore
from content_kpi.errors import BatchFatalError
from content_kpi.extraction.signals import SignalExtractor
from content_kpi.pipeline.orchestrator import PipelineEvent, PipelineOrchestrator, PipelineRun
from content_kpi.rules.catalog import RuleDependencies, build_registry
from content_kpi.scoring.aggregator import CompositeScore
from content_kpi.utils.logger import get_logger, set_console_level

logger = get_logger(__name__)


def build_budget_manager(config: AppConfig) -> BudgetManager:
    """BudgetManager from the budget section (defaults fill an empty rate card)."""
    budget = config.budget
    return BudgetManager(
        per_unit_cap=budget.per_unit_cap,
        session_cap=budget.session_cap,
        target_cost=budget.target_cost,
        breaker_multiplier=budget.breaker_multiplier,
        min_sample_size=budget.min_sample_size,
        rate_card=budget.rate_card or None,
        enabled=budget.enabled,
    )


class ContentKPIService:
    """Long-running scoring service.

    Attributes:
        config: Full application configuration.
        db: Active database instance.
        budget: BudgetManager shared by the AI client and the pipeline.
        orchestrator: PipelineOrchestrator scoring each project.
    """

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        """Initialize with default state. Call start() to run."""
        self.config = config
        self.db: Optional[Database] = None
        self.budget: Optional[BudgetManager] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self._ai_client: Optional[AIClient] = None
        self._scheduler: Optional[AsyncIOScheduler] = None

        self._running = False
        self._cycle_count = 0
        self._errors_count = 0
        self._last_cycle_time: Optional[str] = None
        self._cycle_lock = asyncio.Lock()

    async def setup(self) -> None:
        """Load config and build every component (no scheduling)."""
        if self.config is None:
            logger.info("═══ Loading configuration ═══")
            self.config = load_config()
        set_console_level(self.config.log_level)

        logger.info("═══ Initializing database ═══")
        self.db = Database(self.config.database_path)
        await self.db.initialize()

        logger.info("═══ Initializing components ═══")
        self.budget = build_budget_manager(self.config)
        self._ai_client = AIClient(self.config.ai, self.budget)
        await self._ai_client.__aenter__()

        registry = build_registry(
            self.config.rules,
            RuleDependencies(
                ai_client=self._ai_client,
                content_length=self.config.pipeline.clean_content_length,
            ),
        )
        self.orchestrator = PipelineOrchestrator(
            registry,
            SignalExtractor(),
            self.budget,
            SQLiteScoreStore(self.db),
            concurrency=self.config.pipeline.concurrency,
            dimensions=self.config.dimensions,
            event_sink=self._on_event,
            clean_content_length=self.config.pipeline.clean_content_length,
        )

    async def start(self) -> None:
        """Set up, schedule the analysis cycle, and run until stopped."""
        self._running = True
        try:
            await self.setup()

            logger.info("═══ Setting up scheduler ═══")
            interval = self.config.pipeline.interval_minutes
            self._scheduler = AsyncIOScheduler()
            self._scheduler.add_job(
                self.run_analysis_cycle,
                IntervalTrigger(minutes=interval),
                id="analysis_cycle",
                max_instances=1,
                misfire_grace_time=300,
                name=f"Analysis cycle (every {interval}m)",
            )
            self._scheduler.start()
            logger.info("Scheduler started")

            if self.config.pipeline.run_on_startup:
                logger.info("═══ Running first analysis cycle ═══")
                await self.run_analysis_cycle()

            logger.info("═══ Entering main loop ═══")
            while self._running:
                await asyncio.sleep(1)

        except Exception as e:
            logger.error("Fatal error: %s", e)
            logger.error(traceback.format_exc())
        finally:
            await self.shutdown()

    async def run_analysis_cycle(self) -> dict[str, Any]:
        """Score every project once.

        Each project gets a page-scope run, followed by a domain-scope
        run when the registry holds enabled domain rules. Protected by
        an async lock so cycles never overlap. The budget is reset
        before each run.

        Returns:
            Dict with projects, processed, unanalyzed, domains, errors,
            duration.
        """
        stats: dict[str, Any] = {
            "projects": 0, "processed": 0, "unanalyzed": 0, "domains": 0, "errors": 0,
        }
        if self._cycle_lock.locked():
            logger.warning("Previous analysis cycle still running, skipping")
            return stats

        async with self._cycle_lock:
            self._cycle_count += 1
            cycle_start = time.monotonic()
            self._last_cycle_time = datetime.now().strftime("%H:%M:%S")
            logger.info("═══ Analysis Cycle #%d — %s ═══", self._cycle_count, self._last_cycle_time)

            try:
                project_ids = await self.orchestrator.store.list_projects()
            except Exception as e:
                logger.error("Cannot list projects: %s", e)
                project_ids = []
                stats["errors"] += 1

            score_domains = self._has_domain_rules()
            for project_id in project_ids:
                self.budget.reset()
                try:
                    run = await self.orchestrator.run(project_id)
                except BatchFatalError as e:
                    stats["errors"] += 1
                    logger.error("Project %s aborted: %s", project_id, e)
                    continue
                stats["projects"] += 1
                stats["processed"] += run.processed
                stats["unanalyzed"] += len(run.unanalyzed)
                self._log_run(run)

                if not score_domains:
                    continue
                self.budget.reset()
                try:
                    domain_run = await self.orchestrator.run(project_id, execution_scope="domain")
                except BatchFatalError as e:
                    stats["errors"] += 1
                    logger.error("Domain run for %s aborted: %s", project_id, e)
                    continue
                stats["domains"] += domain_run.processed
                stats["unanalyzed"] += len(domain_run.unanalyzed)
                self._log_run(domain_run)

            elapsed = time.monotonic() - cycle_start
            stats["duration"] = round(elapsed, 1)
            self._errors_count += stats["errors"]

            logger.info("═══ Cycle #%d Complete ═══", self._cycle_count)
            logger.info(
                "  Projects: %d | Processed: %d | Domains: %d | Unanalyzed: %d | Errors: %d | Time: %.1fs",
                stats["projects"], stats["processed"], stats["domains"], stats["unanalyzed"],
                stats["errors"], elapsed,
            )
        return stats

    async def reanalyze(self, project_id: str, page: PageRecord) -> CompositeScore:
        """Explicitly re-score one page (outside the schedule)."""
        return await self.orchestrator.reanalyze(project_id, page)

    def _has_domain_rules(self) -> bool:
        return any(
            rule.enabled and rule.execution_scope == "domain"
            for rule in self.orchestrator.registry.all_rules()
        )

    def _log_run(self, run: PipelineRun) -> None:
        metrics = self.budget.performance_metrics()
        logger.info(
            "  %s: %d/%d processed | spend $%.4f (%s, %.0f%% of cap)",
            run.project_id, run.processed, run.total, metrics["total_spend"],
            metrics["efficiency"], metrics["budget_utilization"] * 100,
        )

    def _on_event(self, event: PipelineEvent) -> None:
        logger.debug("%s %s", event.name, event.to_dict())

    async def shutdown(self) -> None:
        """Graceful shutdown: stop scheduler, close connections."""
        logger.info("═══ Shutting down ═══")
        self._running = False

        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

        if self._ai_client is not None:
            await self._ai_client.__aexit__(None, None, None)
            self._ai_client = None

        if self.db:
            await self.db.close()

        logger.info("Shutdown complete")

    def stop(self) -> None:
        """Ask the main loop to exit."""
        self._running = False

    @property
    def cycle_count(self) -> int:
        """Total analysis cycles run."""
        return self._cycle_count

    @property
    def errors_count(self) -> int:
        """Total project-level errors across cycles."""
        return self._errors_count


def main() -> None:
    """Application entry point."""
    Path("data").mkdir(exist_ok=True)
    Path("logs").mkdir(exist_ok=True)

    app = ContentKPIService()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _signal_handler(sig, frame):
        logger.info("Signal %s received, shutting down...", sig)
        app.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()
