"""Content KPI Engine — Service Integration Test.

Wires the full service (config → database → AI client → catalog rules →
orchestrator) against a temporary SQLite file and runs one analysis
cycle. Budget caps are zero, so the LLM-backed rules are skipped and no
request leaves the process.

Run: python scripts/test_service.py
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import yaml

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")

from content_kpi.config import load_config
from content_kpi.database import queries
from content_kpi.database.models import PageRecord, ProjectRecord
from content_kpi.main import ContentKPIService
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

ARTICLE = """
<html><head><title>Choosing Durable Widgets | Acme</title>
<meta property="article:published_time" content="2026-01-15"></head>
<body><main>
  <h1>Choosing Durable Widgets</h1>
  <p>By Jane Doe, PhD. Acme widgets are durable and affordable for workshops.</p>
  <h2>Sizes</h2><p>Widgets come in three sizes for different workloads and benches.</p>
  <h2>Care</h2><ul><li>Clean monthly</li><li>Store dry</li></ul>
  <a href="https://www.nist.gov/widgets">NIST study</a>
</main></body></html>
"""


def check(label: str, condition: bool) -> None:
    """Log a test condition and fail the test when it does not hold."""
    if condition:
        logger.info("  ✅ %s", label)
    else:
        logger.error("  ❌ FAILED: %s", label)
    assert condition, label


def write_settings(tmp: Path) -> Path:
    with open(PROJECT_ROOT / "config" / "settings.yaml", "r", encoding="utf-8") as f:
        settings = yaml.safe_load(f)
    settings["budget"]["per_unit_cap"] = 0
    settings["budget"]["session_cap"] = 0
    settings["database"]["path"] = str(tmp / "service.db")
    path = tmp / "settings.yaml"
    path.write_text(yaml.safe_dump(settings), encoding="utf-8")
    return path


def test_analysis_cycle() -> None:
    async def scenario(tmp: Path) -> None:
        config = load_config(settings_path=write_settings(tmp), env_path=tmp / ".env")
        service = ContentKPIService(config)
        await service.setup()
        try:
            db = service.db
            await queries.upsert_project(db, ProjectRecord(
                project_id="acme", brand_name="Acme",
                key_attributes=["durable"], keywords=["widgets"],
            ))
            await queries.upsert_page(db, "acme", PageRecord(url="https://acme.example/guide", content=ARTICLE))
            await queries.upsert_page(db, "acme", PageRecord(
                url="https://acme.example/missing", content="<html><body>Not found</body></html>",
                status_code=404,
            ))

            stats = await service.run_analysis_cycle()
            check("One project scored", stats["projects"] == 1 and stats["errors"] == 0)
            check("Both pages processed", stats["processed"] == 2 and stats["unanalyzed"] == 0)
            check("Cycle counted", service.cycle_count == 1)

            guide = await queries.get_composite_score(db, "acme", "https://acme.example/guide")
            missing = await queries.get_composite_score(db, "acme", "https://acme.example/missing")
            check("Scores stored", guide is not None and missing is not None)
            check(
                "LLM-backed rules skipped by the zero budget",
                set(guide["skipped_rules"]) == {"expert-authority", "brand-alignment"},
            )
            check("Missing page scores lower", missing["global_score"] < guide["global_score"])
            check("No spend recorded", service.budget.state.session_spend == 0.0)

            technical = [
                row for row in await queries.get_dimension_scores(db, "acme", "https://acme.example/missing")
                if row["dimension"] == "technical"
            ]
            check("404 gate caps technical at 0", technical[0]["final_score"] == 0)

            check("Domain run scored the one domain", stats["domains"] == 1)
            site = await queries.get_composite_score(db, "acme", "https://acme.example")
            check("Domain score stored under the root", site is not None and site["global_score"] == 100)
            site_technical = [
                row for row in await queries.get_dimension_scores(db, "acme", "https://acme.example")
                if row["dimension"] == "technical"
            ]
            check(
                "HTTPS rule evaluated for the domain",
                [(s["rule_id"], s["score"]) for s in site_technical[0]["sub_scores"]]
                == [("https-security", 100)],
            )
            domain = await queries.get_domain_status(db, "acme", "https://acme.example")
            check(
                "Domain marked processed",
                domain["analysis_status"] == queries.PAGE_PROCESSED and domain["page_count"] == 2,
            )

            summary = await queries.get_project_summary(db, "acme")
            check("Pages marked processed", summary["pages"] == {queries.PAGE_PROCESSED: 2})
            check("Domain counted", summary["domains"] == {queries.PAGE_PROCESSED: 1})
        finally:
            await service.shutdown()

        check("Database closed on shutdown", service.db._connection is None)

    async def runner() -> None:
        with tempfile.TemporaryDirectory() as tmp:
            await scenario(Path(tmp))

    asyncio.run(runner())


def test_overlapping_cycle_is_skipped() -> None:
    async def scenario(tmp: Path) -> None:
        config = load_config(settings_path=write_settings(tmp), env_path=tmp / ".env")
        service = ContentKPIService(config)
        await service.setup()
        try:
            async with service._cycle_lock:
                stats = await service.run_analysis_cycle()
            check("Skipped while a cycle holds the lock", stats["projects"] == 0 and service.cycle_count == 0)
        finally:
            await service.shutdown()

    async def runner() -> None:
        with tempfile.TemporaryDirectory() as tmp:
            await scenario(Path(tmp))

    asyncio.run(runner())


def run_all_tests() -> None:
    """Run the service integration tests."""
    logger.info("╔══════════════════════════════════════════╗")
    logger.info("║  Content KPI Engine — Service Tests      ║")
    logger.info("╚══════════════════════════════════════════╝")

    for test in (test_analysis_cycle, test_overlapping_cycle_is_skipped):
        logger.info("═══ %s ═══", test.__name__)
        test()

    logger.info("🎉 All service tests passed!")


if __name__ == "__main__":
    run_all_tests()
