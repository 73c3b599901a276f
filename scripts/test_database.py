"""Content KPI Engine — Database Tests.

Runs against a throwaway SQLite file in a temporary directory.

Verifies:
  1. Schema creation and project round-trip
  2. Page upserts, foreign keys and analysis status
  3. Dimension and composite score storage
  4. SQLiteScoreStore driving full page and domain pipeline runs

Run: python scripts/test_database.py
"""

from __future__ import annotations

import asyncio
import sqlite3
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from content_kpi.budget.manager import BudgetManager
from content_kpi.database import queries
from content_kpi.database.db import Database
from content_kpi.database.models import PageRecord, ProjectRecord
from content_kpi.database.store import SQLiteScoreStore
from content_kpi.extraction.signals import SignalExtractor
from content_kpi.pipeline.orchestrator import PipelineOrchestrator
from content_kpi.rules.base import RuleApplicability, RuleContext, RuleResult, build_result
from content_kpi.rules.registry import RuleRegistry
from content_kpi.rules.technical import HttpsSecurityRule
from content_kpi.scoring.aggregator import WeightedAggregator, compute_composite
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

PROJECT = ProjectRecord(
    project_id="acme",
    brand_name="Acme",
    key_attributes=["durable", "affordable"],
    competitors=["Globex"],
    keywords=["widgets"],
)
HTML = "<html><body><h1>Widgets</h1><p>Acme widgets are durable.</p></body></html>"


def check(label: str, condition: bool) -> None:
    """Log a test condition and fail the test when it does not hold."""
    if condition:
        logger.info("  ✅ %s", label)
    else:
        logger.error("  ❌ FAILED: %s", label)
    assert condition, label


def with_database(scenario) -> None:
    """Run scenario(db) against a fresh database file."""
    async def runner() -> None:
        with tempfile.TemporaryDirectory() as tmp:
            async with Database(str(Path(tmp) / "nested" / "test.db")) as db:
                await scenario(db)

    asyncio.run(runner())


class HeadingRule:
    """Scores 100 when the page has an H1, else 0."""

    id = "has-h1"
    name = "Has H1"
    dimension = "structure"
    execution_scope = "page"
    weight = 1.0
    priority = 0
    enabled = True
    applicability = RuleApplicability()
    requires_invoker = False
    gate_threshold = None

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        if "broken" in context.url:
            raise RuntimeError("rule crashed")
        score = 100 if context.signals.h1 else 0
        return build_result(self, score, [f"{len(context.signals.h1)} H1 heading(s)"])


class FlakyHttpsRule(HttpsSecurityRule):
    """HTTPS check that crashes on domains named 'broken'."""

    async def evaluate(self, context: RuleContext) -> RuleResult:
        if "broken" in context.url:
            raise RuntimeError("rule crashed")
        return await super().evaluate(context)


# ═══════════════════════════════════════════════════════════
# Tests
# ═══════════════════════════════════════════════════════════


def test_projects() -> None:
    async def scenario(db: Database) -> None:
        check("Database file created", db.db_path.exists())
        check("Unknown project → None", await queries.get_project(db, "acme") is None)

        await queries.upsert_project(db, PROJECT)
        loaded = await queries.get_project(db, "acme")
        check("Project round-trips", loaded == PROJECT)

        await queries.upsert_project(db, ProjectRecord(project_id="acme", brand_name="Acme Corp"))
        await queries.upsert_project(db, ProjectRecord(project_id="globex", brand_name="Globex"))
        loaded = await queries.get_project(db, "acme")
        check("Upsert updates brand name", loaded.brand_name == "Acme Corp" and loaded.keywords == [])
        check("Ids in creation order", await queries.list_project_ids(db) == ["acme", "globex"])

        brand = loaded.to_brand()
        check("BrandContext built", brand.brand_name == "Acme Corp" and brand.keywords == ())

    with_database(scenario)


def test_pages_and_status() -> None:
    async def scenario(db: Database) -> None:
        try:
            await queries.upsert_page(db, "ghost", PageRecord(url="https://example.com/"))
        except sqlite3.IntegrityError:
            check("Page of unknown project rejected", True)
        else:
            check("Page of unknown project rejected", False)

        await queries.upsert_project(db, PROJECT)
        fetched = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        page = PageRecord(
            url="https://example.com/a",
            content=HTML,
            status_code=200,
            fetched_at=fetched,
            metadata={"publishedTime": "2026-01-01"},
            category="blog",
        )
        await queries.upsert_page(db, "acme", page)
        await queries.upsert_page(db, "acme", PageRecord(url="https://example.com/b", content=HTML))

        pages = await queries.list_pages(db, "acme")
        check("Pages in insertion order", [p.url for p in pages] == ["https://example.com/a", "https://example.com/b"])
        check("Page round-trips", pages[0] == page)

        status = await queries.get_page_status(db, "acme", "https://example.com/a")
        check("New pages are pending", status["analysis_status"] == queries.PAGE_PENDING)

        await queries.set_page_status(db, "acme", "https://example.com/a", queries.PAGE_PROCESSED)
        await queries.set_page_status(
            db, "acme", "https://example.com/b", queries.PAGE_UNANALYZED, "extraction failed",
        )
        pending = await queries.list_pages(db, "acme", status=queries.PAGE_PENDING)
        check("Status filter", pending == [])
        status = await queries.get_page_status(db, "acme", "https://example.com/b")
        check("Reason stored", status["unanalyzed_reason"] == "extraction failed")
        check("Processed timestamp set", status["processed_at"] is not None)

        await queries.upsert_page(db, "acme", PageRecord(url="https://example.com/b", content="<p>new</p>"))
        status = await queries.get_page_status(db, "acme", "https://example.com/b")
        check("Refetched page back to pending", status["analysis_status"] == queries.PAGE_PENDING
              and status["unanalyzed_reason"] == "")
        check("Unknown page status → None", await queries.get_page_status(db, "acme", "https://nope/") is None)

        try:
            await queries.set_page_status(db, "acme", "https://example.com", queries.PAGE_PROCESSED)
        except LookupError:
            check("Status of an unstored URL rejected", True)
        else:
            check("Status of an unstored URL rejected", False)

    with_database(scenario)


def test_scores() -> None:
    async def scenario(db: Database) -> None:
        rule = HeadingRule()
        result = build_result(rule, 80, ["one H1"])
        dimension = WeightedAggregator().aggregate("structure", [result])
        composite = compute_composite({"structure": dimension}, {"structure": 2.0})

        await queries.upsert_dimension_score(db, "acme", "https://example.com/a", dimension)
        await queries.upsert_composite_score(db, "acme", "https://example.com/a", composite)

        stored = await queries.get_dimension_scores(db, "acme", "https://example.com/a")
        check("One dimension row", len(stored) == 1)
        check("Final score stored", stored[0]["final_score"] == 80)
        check("Sub-scores decoded", stored[0]["sub_scores"][0]["rule_id"] == "has-h1")
        check("Details decoded", stored[0]["details"]["total_weight"] == 1.0)

        overall = await queries.get_composite_score(db, "acme", "https://example.com/a")
        check("Composite stored", overall["global_score"] == 80)
        check("Dimension map decoded", overall["dimensions"] == {"structure": 80})
        check("Weights decoded", overall["weights"] == {"structure": 2.0})
        check("No skipped rules", overall["skipped_rules"] == [])

        lower = WeightedAggregator().aggregate("structure", [build_result(rule, 40, ["no H1"])])
        await queries.upsert_dimension_score(db, "acme", "https://example.com/a", lower)
        stored = await queries.get_dimension_scores(db, "acme", "https://example.com/a")
        check("Re-score replaces the row", len(stored) == 1 and stored[0]["final_score"] == 40)

        check("Missing composite → None", await queries.get_composite_score(db, "acme", "https://nope/") is None)

    with_database(scenario)


def test_store_rejects_unknown_score_type() -> None:
    async def scenario(db: Database) -> None:
        store = SQLiteScoreStore(db)
        try:
            await store.upsert("acme", "https://example.com/", {"score": 1})
        except TypeError:
            check("Unknown score type rejected", True)
        else:
            check("Unknown score type rejected", False)
        check("Unknown project has no brand", await store.get_brand("ghost") is None)

    with_database(scenario)


def test_pipeline_with_sqlite_store() -> None:
    async def scenario(db: Database) -> None:
        await queries.upsert_project(db, PROJECT)
        for url, content in (
            ("https://example.com/with-h1", HTML),
            ("https://example.com/no-h1", "<html><body><p>Plain text.</p></body></html>"),
            ("https://example.com/broken", HTML),
        ):
            await queries.upsert_page(db, "acme", PageRecord(url=url, content=content))

        store = SQLiteScoreStore(db)
        registry = RuleRegistry()
        registry.register(HeadingRule())
        orchestrator = PipelineOrchestrator(registry, SignalExtractor(), BudgetManager(), store)

        check("Store lists projects", await store.list_projects() == ["acme"])
        run = await orchestrator.run("acme")

        check("Two processed, one unanalyzed", run.processed == 2 and len(run.unanalyzed) == 1)
        good = await queries.get_composite_score(db, "acme", "https://example.com/with-h1")
        bad = await queries.get_composite_score(db, "acme", "https://example.com/no-h1")
        check("Scores persisted", good["global_score"] == 100 and bad["global_score"] == 0)

        summary = await queries.get_project_summary(db, "acme")
        check(
            "Status counts",
            summary["pages"] == {queries.PAGE_PROCESSED: 2, queries.PAGE_UNANALYZED: 1},
        )
        check("Average score", summary["avg_global_score"] == 50.0)

        status = await queries.get_page_status(db, "acme", "https://example.com/broken")
        check("Failure reason recorded", "rule crashed" in status["unanalyzed_reason"])

    with_database(scenario)


def test_domain_scope_with_sqlite_store() -> None:
    async def scenario(db: Database) -> None:
        await queries.upsert_project(db, PROJECT)
        for url in (
            "https://example.com/a",
            "https://EXAMPLE.com/b",
            "http://plain.example/x",
            "https://broken.example/p",
        ):
            await queries.upsert_page(db, "acme", PageRecord(url=url, content=HTML))

        store = SQLiteScoreStore(db)
        registry = RuleRegistry()
        registry.register(HeadingRule())
        registry.register(FlakyHttpsRule())
        orchestrator = PipelineOrchestrator(registry, SignalExtractor(), BudgetManager(), store)

        run = await orchestrator.run("acme", execution_scope="domain")
        check("One unit per domain", run.total == 3)
        check("Two domains processed", run.processed == 2)
        check("Crashing domain unanalyzed", run.unanalyzed == ["https://broken.example"])

        secure = await queries.get_composite_score(db, "acme", "https://example.com")
        plain = await queries.get_composite_score(db, "acme", "http://plain.example")
        check("Scores stored under the domain root", secure is not None and plain is not None)
        check("HTTPS domain scores 100", secure["global_score"] == 100)
        check("Plain HTTP domain scores 0", plain["global_score"] == 0)
        technical = [
            row for row in await queries.get_dimension_scores(db, "acme", "https://example.com")
            if row["dimension"] == "technical"
        ]
        check(
            "Only the domain rule scored technical",
            [s["rule_id"] for s in technical[0]["sub_scores"]] == ["https-security"],
        )

        status = await queries.get_domain_status(db, "acme", "https://example.com")
        check("Domain marked processed", status["analysis_status"] == queries.PAGE_PROCESSED)
        check("Domain page count", status["page_count"] == 2)
        failed = await queries.get_domain_status(db, "acme", "https://broken.example")
        check("Domain failure reason stored", "rule crashed" in failed["unanalyzed_reason"])
        check(
            "Domains listed in analysis order",
            [d["root"] for d in await queries.list_domains(db, "acme")]
            == ["https://example.com", "http://plain.example", "https://broken.example"],
        )

        summary = await queries.get_project_summary(db, "acme")
        check("Page statuses untouched by a domain run", summary["pages"] == {queries.PAGE_PENDING: 4})
        check(
            "Domain status counts",
            summary["domains"] == {queries.PAGE_PROCESSED: 2, queries.PAGE_UNANALYZED: 1},
        )
        check("Domain scores kept out of the page average", summary["avg_global_score"] is None)
        check("Domain roots are not pages", len(await store.list_pages("acme")) == 4)

    with_database(scenario)


def test_unstored_page_is_unanalyzed() -> None:
    async def scenario(db: Database) -> None:
        await queries.upsert_project(db, PROJECT)
        registry = RuleRegistry()
        registry.register(HeadingRule())
        orchestrator = PipelineOrchestrator(
            registry, SignalExtractor(), BudgetManager(), SQLiteScoreStore(db)
        )
        page = PageRecord(url="https://example.com/never-stored", content=HTML)

        run = await orchestrator.run("acme", pages=[page])
        check("Status update failure fails the unit", run.unanalyzed == [page.url] and run.processed == 0)

    with_database(scenario)


def run_all_tests() -> None:
    """Run all database tests."""
    logger.info("╔══════════════════════════════════════════╗")
    logger.info("║  Content KPI Engine — Database Tests     ║")
    logger.info("╚══════════════════════════════════════════╝")

    for test in (
        test_projects,
        test_pages_and_status,
        test_scores,
        test_store_rejects_unknown_score_type,
        test_pipeline_with_sqlite_store,
        test_domain_scope_with_sqlite_store,
        test_unstored_page_is_unanalyzed,
    ):
        logger.info("═══ %s ═══", test.__name__)
        test()

    logger.info("🎉 All database tests passed!")


if __name__ == "__main__":
    run_all_tests()
