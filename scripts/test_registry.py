"""Content KPI Engine — Rule Registry Tests.

Verifies rule registration and lookup:
  1. Priority ordering, stable on ties
  2. Applicability and execution-scope filtering
  3. Enable/disable and weight changes
  4. Independent registries
  5. Catalog build with configuration overrides

Run: python scripts/test_registry.py
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from content_kpi.config import RuleOverride, RulesConfig
from content_kpi.errors import ConfigurationError
from content_kpi.rules.base import (
    Rule,
    RuleApplicability,
    RuleContext,
    RuleResult,
    applies_to,
    build_result,
)
from content_kpi.rules.catalog import RULE_FACTORIES, build_registry
from content_kpi.rules.registry import RuleRegistry
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


def check(label: str, condition: bool) -> None:
    """Log a test condition and fail the test when it does not hold."""
    if condition:
        logger.info("  ✅ %s", label)
    else:
        logger.error("  ❌ FAILED: %s", label)
    assert condition, label


class StubRule:
    """Minimal rule returning a fixed score."""

    requires_invoker = False
    gate_threshold: Optional[int] = None

    def __init__(
        self,
        rule_id: str,
        dimension: str = "structure",
        priority: int = 0,
        weight: float = 1.0,
        execution_scope: str = "page",
        applicability: RuleApplicability = RuleApplicability(),
        score: float = 50,
    ) -> None:
        self.id = rule_id
        self.name = rule_id
        self.dimension = dimension
        self.priority = priority
        self.weight = weight
        self.enabled = True
        self.execution_scope = execution_scope
        self.applicability = applicability
        self.score = score

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        return build_result(self, self.score, [f"{self.id} fixed score"])


def ids(rules: list) -> list[str]:
    return [r.id for r in rules]


BLOG = RuleContext(project_id="p1", url="https://blog.example.com/post", category="blog")
PRODUCT = RuleContext(project_id="p1", url="https://shop.example.com/item", category="product")


# ═══════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════


def test_stub_satisfies_protocol() -> None:
    check("StubRule is a Rule", isinstance(StubRule("x"), Rule))


def test_priority_order() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("low", priority=1))
    registry.register(StubRule("high", priority=10))
    registry.register(StubRule("mid-a", priority=5))
    registry.register(StubRule("mid-b", priority=5))

    check(
        "Highest priority first, ties in registration order",
        ids(registry.get_rules_for_dimension("structure", BLOG)) == ["high", "mid-a", "mid-b", "low"],
    )


def test_replace_same_id() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("a", priority=1, score=10))
    registry.register(StubRule("a", priority=3, score=90))

    check("Still one rule", len(registry) == 1)
    check("Replacement stored", registry.get("a").score == 90)
    check("No duplicate in dimension list", ids(registry.all_rules()) == ["a"])


def test_register_rejects_bad_rules() -> None:
    registry = RuleRegistry()
    for rule in (StubRule("neg", weight=-1), StubRule("scope", execution_scope="site")):
        try:
            registry.register(rule)
        except ConfigurationError:
            check(f"{rule.id} rejected", True)
        else:
            check(f"{rule.id} rejected", False)


def test_applicability_filters() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("everyone"))
    registry.register(StubRule(
        "blogs-only",
        applicability=RuleApplicability(scope="category", categories=("blog",)),
    ))
    registry.register(StubRule(
        "shop-domain",
        applicability=RuleApplicability(scope="domain", domains=("shop.",)),
    ))

    check("Blog context", ids(registry.get_rules_for_dimension("structure", BLOG)) == ["everyone", "blogs-only"])
    check("Product context", ids(registry.get_rules_for_dimension("structure", PRODUCT)) == ["everyone", "shop-domain"])
    check("Unknown dimension → []", registry.get_rules_for_dimension("brand", BLOG) == [])


def test_unknown_applicability_scope() -> None:
    rule = StubRule("odd", applicability=RuleApplicability(scope="weekday"))
    check("Unknown scope never applies", applies_to(rule, BLOG) is False)


def test_execution_scope_filter() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("per-page", dimension="technical"))
    registry.register(StubRule("per-domain", dimension="technical", execution_scope="domain"))

    check("Page scope", ids(registry.get_rules_for_dimension("technical", BLOG, "page")) == ["per-page"])
    check("Domain scope", ids(registry.get_rules_for_dimension("technical", BLOG, "domain")) == ["per-domain"])


def test_lookup_does_not_mutate() -> None:
    registry = RuleRegistry()
    rule = StubRule("a", weight=0.7)
    registry.register(rule)
    registry.get_rules_for_dimension("structure", BLOG)
    check("Weight untouched", rule.weight == 0.7)
    check("Context untouched", BLOG.category == "blog")


def test_enable_disable_and_weight() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("a"))
    registry.register(StubRule("b"))

    registry.set_enabled("a", False)
    check("Disabled rule excluded", ids(registry.get_rules_for_dimension("structure", BLOG)) == ["b"])
    registry.set_enabled("a", True)
    check("Re-enabled rule back", ids(registry.get_rules_for_dimension("structure", BLOG)) == ["a", "b"])

    registry.set_weight("b", 2.5)
    check("Weight updated", registry.get("b").weight == 2.5)

    for call in (lambda: registry.set_weight("b", -0.1), lambda: registry.set_enabled("zzz", True)):
        try:
            call()
        except ConfigurationError:
            check("Invalid change rejected", True)
        else:
            check("Invalid change rejected", False)


def test_independent_registries() -> None:
    first, second = RuleRegistry("first"), RuleRegistry("second")
    first.register(StubRule("only-in-first"))
    check("Second registry unaffected", "only-in-first" not in second and len(second) == 0)


def test_summary() -> None:
    registry = RuleRegistry()
    registry.register(StubRule("a"))
    registry.register(StubRule("b", dimension="brand"))
    registry.set_enabled("b", False)
    summary = registry.summary()
    check("Totals", summary["total"] == 2 and summary["enabled"] == 1)
    check("Per dimension", summary["by_dimension"] == {"structure": 1, "brand": 1})


# ═══════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════


def test_catalog_builds_every_rule() -> None:
    registry = build_registry()
    check("Every catalogued rule registered", len(registry) == len(RULE_FACTORIES))
    check(
        "All five dimensions present",
        set(registry.dimensions()) == {"freshness", "structure", "authority", "brand", "technical"},
    )
    check("No LLM rule needs the invoker without a client", not any(r.requires_invoker for r in registry.all_rules()))


def test_catalog_overrides() -> None:
    config = RulesConfig(overrides={
        "lists-tables": RuleOverride(weight=0.5),
        "timeliness": RuleOverride(enabled=False),
    })
    registry = build_registry(config)
    check("Weight override applied", registry.get("lists-tables").weight == 0.5)
    check("Enabled override applied", registry.get("timeliness").enabled is False)


def test_catalog_unknown_override() -> None:
    try:
        build_registry(RulesConfig(overrides={"no-such-rule": RuleOverride(weight=1.0)}))
    except ConfigurationError as e:
        check("Unknown override rejected", "no-such-rule" in str(e))
    else:
        check("Unknown override rejected", False)


def run_all_tests() -> None:
    """Run all registry tests."""
    logger.info("╔══════════════════════════════════════════╗")
    logger.info("║  Content KPI Engine — Registry Tests     ║")
    logger.info("╚══════════════════════════════════════════╝")

    for test in (
        test_stub_satisfies_protocol,
        test_priority_order,
        test_replace_same_id,
        test_register_rejects_bad_rules,
        test_applicability_filters,
        test_unknown_applicability_scope,
        test_execution_scope_filter,
        test_lookup_does_not_mutate,
        test_enable_disable_and_weight,
        test_independent_registries,
        test_summary,
        test_catalog_builds_every_rule,
        test_catalog_overrides,
        test_catalog_unknown_override,
    ):
        logger.info("═══ %s ═══", test.__name__)
        test()

    logger.info("🎉 All registry tests passed!")


if __name__ == "__main__":
    run_all_tests()
