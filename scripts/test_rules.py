"""Content KPI Engine — Reference Rule Tests.

Runs each catalogued rule against hand-built PageSignals, plus the
LLM-backed rules against a fake AI client.

Run: python scripts/test_rules.py
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.errors import InvocationError
from content_kpi.extraction.signals import BrandContext, PageSignals
from content_kpi.rules.authority import CitingSourcesRule, ExpertAuthorityRule
from content_kpi.rules.base import RuleContext, RuleResult, build_result, degraded_result
from content_kpi.rules.brand import BrandAlignmentRule, KeywordAlignmentRule
from content_kpi.rules.freshness import DateSignalsRule, TimelinessRule, parse_date
from content_kpi.rules.structure import ListsTablesRule, MainHeadingRule, SubheadingsRule
from content_kpi.rules.technical import HttpsSecurityRule, StatusCodeRule
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

FETCHED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)
BRAND = BrandContext(
    brand_name="Acme",
    key_attributes=("durable", "affordable"),
    competitors=("Globex",),
    keywords=("widgets", "workshop", "warranty"),
)


def check(label: str, condition: bool) -> None:
    """Log a test condition and fail the test when it does not hold."""
    if condition:
        logger.info("  ✅ %s", label)
    else:
        logger.error("  ❌ FAILED: %s", label)
    assert condition, label


def make_context(
    signals: Optional[PageSignals] = None,
    url: str = "https://example.com/guide",
    **kwargs: Any,
) -> RuleContext:
    """RuleContext with sensible defaults for rule tests."""
    kwargs.setdefault("fetched_at", FETCHED_AT)
    return RuleContext(project_id="p1", url=url, signals=signals or PageSignals(), **kwargs)


def evaluate(rule: Any, context: RuleContext) -> RuleResult:
    return asyncio.run(rule.evaluate(context))


class FakeAIClient:
    """Returns a canned answer (or raises) and remembers the requests."""

    def __init__(self, answer: Optional[dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self.answer = answer
        self.error = error
        self.requests: list[ReasoningRequest] = []

    def estimate_cost(self, request: ReasoningRequest) -> float:
        return 0.002

    async def analyze(self, request: ReasoningRequest) -> dict[str, Any]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return dict(self.answer or {})


# ═══════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════


def test_build_result_contract() -> None:
    rule = CitingSourcesRule(weight=2.0)
    result = build_result(rule, 150, [])
    check("Score clamped to 100", result.score == 100)
    check("Contribution = score × weight", result.contribution == 200)
    check("Empty evidence replaced", len(result.evidence) == 1)

    scaled = build_result(rule, 5, ["x"], max_score=10)
    check("Scaled to 0-100", scaled.score == 50)

    try:
        RuleResult("r", 50, 100, 1.0, 50, True, evidence=[])
    except ValueError:
        check("Empty evidence rejected", True)
    else:
        check("Empty evidence rejected", False)


def test_degraded_result() -> None:
    result = degraded_result(ExpertAuthorityRule(), "budget", "over cap")
    check("Score 0, weight 0", result.score == 0 and result.weight == 0 and result.contribution == 0)
    check("Evidence labelled", result.evidence[0] == "skipped: budget")
    check("One issue explains the skip", len(result.issues) == 1 and "budget" in result.issues[0].description)
    check("Marked skipped", result.skipped)


# ═══════════════════════════════════════════════════════════
# Freshness
# ═══════════════════════════════════════════════════════════


def test_parse_date() -> None:
    check("Plain date", parse_date("2026-01-10") == datetime(2026, 1, 10, tzinfo=timezone.utc))
    check("Zulu datetime", parse_date("2026-01-10T08:00:00Z").hour == 8)
    check("Garbage", parse_date("yesterday") is None)
    check("Empty", parse_date(None) is None)


def test_date_signals() -> None:
    rich = PageSignals(date_source="json-ld", modified_date="2026-02-01", update_indicators=["updated"])
    check("Structured date + modified + markers = 100", evaluate(DateSignalsRule(), make_context(rich)).score == 100)

    bare = evaluate(DateSignalsRule(), make_context(PageSignals()))
    check("No date = 0", bare.score == 0)
    check("No date raises a high issue", bare.issues[0].severity == "high")


def test_timeliness() -> None:
    rule = TimelinessRule()
    recent = evaluate(rule, make_context(PageSignals(modified_date="2026-02-15")))
    check("14 days old = 100", recent.score == 100 and recent.details["age_days"] == 14)

    half_year = evaluate(rule, make_context(PageSignals(publish_date="2025-10-01")))
    check("~5 months old = 75", half_year.score == 75)

    stale = evaluate(rule, make_context(PageSignals(publish_date="2024-01-01")))
    check("Over a year old = 15", stale.score == 15 and stale.issues)

    unknown = evaluate(rule, make_context(PageSignals()))
    check("Unknown age = 0", unknown.score == 0)


# ═══════════════════════════════════════════════════════════
# Structure
# ═══════════════════════════════════════════════════════════


def test_main_heading() -> None:
    rule = MainHeadingRule()
    missing = evaluate(rule, make_context(PageSignals()))
    check("No H1 = 0", missing.score == 0)
    check("No H1 is critical", missing.issues[0].severity == "critical")
    check("No H1 fails", not missing.passed)

    good = evaluate(rule, make_context(PageSignals(
        title="Complete Widget Guide | Acme", h1=["Complete Widget Guide"],
    )))
    check("Single aligned H1 = 100", good.score == 100)

    multiple = evaluate(rule, make_context(PageSignals(
        title="Complete Widget Guide", h1=["Complete Widget Guide", "Another"],
    )))
    check("Multiple H1s = 30 + 0.7 × 50", multiple.score == 65)
    check("Multiple H1s flagged", multiple.issues[0].affected_elements == ["Complete Widget Guide", "Another"])
    check("Main heading is a gate", rule.gate_threshold == 40)


def test_subheadings() -> None:
    outline = PageSignals(
        headings=[(2, "Choosing widgets"), (3, "Sizes"), (2, "Care and storage")],
        word_count=300,
    )
    result = evaluate(SubheadingsRule(), make_context(outline))
    check("H2 + short + levels + descriptive = 90", result.score == 90)

    flat = evaluate(SubheadingsRule(), make_context(PageSignals(word_count=200)))
    check("No H2 raises a high issue", any(i.severity == "high" for i in flat.issues))


def test_lists_tables() -> None:
    long_plain = evaluate(ListsTablesRule(), make_context(PageSignals(word_count=1200)))
    check("Long content without lists = 0", long_plain.score == 0 and long_plain.issues)

    formatted = evaluate(ListsTablesRule(), make_context(PageSignals(list_count=3, table_count=1)))
    check("Lists and table = 100", formatted.score == 100)

    short = evaluate(ListsTablesRule(), make_context(PageSignals(word_count=200)))
    check("Short content is neutral", short.score == 50)


# ═══════════════════════════════════════════════════════════
# Authority
# ═══════════════════════════════════════════════════════════


def test_citing_sources() -> None:
    signals = PageSignals(external_links=[
        "https://www.nist.gov/a", "https://research.example.org/b", "https://blog.other.com/c",
    ])
    result = evaluate(CitingSourcesRule(), make_context(signals))
    check("3 domains + authoritative = 85", result.score == 85)

    none = evaluate(CitingSourcesRule(), make_context(PageSignals()))
    check("No sources = 10", none.score == 10)


def test_expert_authority_heuristic() -> None:
    rule = ExpertAuthorityRule()
    check("No client → no invoker needed", not rule.requires_invoker)
    check("No client → no cost", rule.estimate_cost(make_context()) == 0.0)

    text = "Written by Jane Doe, PhD. We tested 12 widgets over three months."
    result = evaluate(rule, make_context(clean_content=text))
    check("Byline + credentials + first-hand = 90", result.score == 90)
    check("Evidence says heuristic", result.evidence[0].startswith("Heuristic fallback"))


def test_expert_authority_llm() -> None:
    client = FakeAIClient(answer={
        "score": "82", "has_named_author": True, "credentials": ["Mechanical engineer"],
        "first_hand_experience": True, "reasoning": "Named engineer with tests",
        "_provider": "gemini",
    })
    rule = ExpertAuthorityRule(client, content_length=10)
    check("Client → invoker needed", rule.requires_invoker)
    check("Cost estimate from client", rule.estimate_cost(make_context()) == 0.002)

    result = evaluate(rule, make_context(clean_content="x" * 50))
    check("Score from the answer", result.score == 82)
    check("Method recorded", result.details["method"] == "llm")
    check("Content truncated in prompt", "x" * 11 not in client.requests[0].prompt)


def test_expert_authority_invocation_error() -> None:
    client = FakeAIClient(error=InvocationError("both down", target="groq"))
    result = evaluate(ExpertAuthorityRule(client), make_context(clean_content="Anonymous tips."))
    check("Falls back to heuristic", result.details["method"] == "heuristic")
    check("Reason mentions the failure", "both down" in result.evidence[0])


def test_expert_authority_applicability() -> None:
    rule = ExpertAuthorityRule()
    check("Applies to blogs", rule.applicability.scope == "category" and "blog" in rule.applicability.categories)
    check("Not to products", "product" not in rule.applicability.categories)


# ═══════════════════════════════════════════════════════════
# Brand
# ═══════════════════════════════════════════════════════════


def test_keyword_alignment() -> None:
    neutral = evaluate(KeywordAlignmentRule(), make_context())
    check("No brand = neutral 50", neutral.score == 50)

    signals = PageSignals(keyword_hits=["widgets", "workshop"], brand_mentions=2)
    result = evaluate(KeywordAlignmentRule(), make_context(signals, brand=BRAND))
    check("2/3 keywords + mention", round(result.score) == round(2 / 3 * 80 + 20))
    check("Missing keyword reported", result.details["missing"] == ["warranty"])


def test_brand_alignment() -> None:
    neutral = evaluate(BrandAlignmentRule(FakeAIClient()), make_context())
    check("No brand = neutral 50, no call", neutral.score == 50)

    text = "acme widgets are durable. globex sells cheaper ones."
    heuristic = evaluate(BrandAlignmentRule(), make_context(brand=BRAND, clean_content=text))
    check("1/2 attributes + brand - competitor = 55", heuristic.score == 55)
    check("Missing attribute reported", heuristic.details["attributes_missing"] == ["affordable"])

    client = FakeAIClient(answer={
        "score": 70, "attributes_covered": ["durable"], "attributes_missing": ["affordable"],
        "competitor_mentions": [], "reasoning": "ok", "_provider": "groq",
    })
    llm = evaluate(BrandAlignmentRule(client), make_context(brand=BRAND, clean_content=text))
    check("LLM score used", llm.score == 70 and llm.details["method"] == "llm")
    check("Brand passed to the prompt", "Acme" in client.requests[0].prompt)


# ═══════════════════════════════════════════════════════════
# Technical
# ═══════════════════════════════════════════════════════════


def test_status_code() -> None:
    rule = StatusCodeRule()
    check("200 = 100", evaluate(rule, make_context(status_code=200)).score == 100)
    check("301 = 60", evaluate(rule, make_context(status_code=301)).score == 60)
    broken = evaluate(rule, make_context(status_code=404))
    check("404 = 0, critical", broken.score == 0 and broken.issues[0].severity == "critical")
    check("Status is a gate", rule.gate_threshold == 50)


def test_https_security() -> None:
    rule = HttpsSecurityRule()
    check("Domain scope", rule.execution_scope == "domain")

    insecure = evaluate(rule, make_context(url="http://example.com"))
    check("Plain HTTP = 0", insecure.score == 0)

    mixed = '<img src="http://cdn.example.com/a.png"><script src="http://x.com/s.js"></script>'
    result = evaluate(rule, make_context(url="https://example.com", content=mixed))
    check("Two mixed-content resources = 80", result.score == 80)

    clean = evaluate(rule, make_context(url="https://example.com", content='<img src="https://a/b.png">'))
    check("Clean HTTPS = 100", clean.score == 100)


def run_all_tests() -> None:
    """Run all rule tests."""
    logger.info("╔══════════════════════════════════════════╗")
    logger.info("║  Content KPI Engine — Rule Tests         ║")
    logger.info("╚══════════════════════════════════════════╝")

    for test in (
        test_build_result_contract,
        test_degraded_result,
        test_parse_date,
        test_date_signals,
        test_timeliness,
        test_main_heading,
        test_subheadings,
        test_lists_tables,
        test_citing_sources,
        test_expert_authority_heuristic,
        test_expert_authority_llm,
        test_expert_authority_invocation_error,
        test_expert_authority_applicability,
        test_keyword_alignment,
        test_brand_alignment,
        test_status_code,
        test_https_security,
    ):
        logger.info("═══ %s ═══", test.__name__)
        test()

    logger.info("🎉 All rule tests passed!")


if __name__ == "__main__":
    run_all_tests()
