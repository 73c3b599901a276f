"""Content KPI Engine — Rules Package.

Scoring rules, the registry that holds them, and the static catalog that
builds the default registry.
"""

from content_kpi.rules.base import (
    Issue,
    Rule,
    RuleApplicability,
    RuleContext,
    RuleResult,
    applies_to,
    build_issue,
    build_result,
    degraded_result,
)
from content_kpi.rules.catalog import RULE_FACTORIES, RuleDependencies, build_registry
from content_kpi.rules.registry import RuleRegistry

__all__ = [
    "Issue",
    "Rule",
    "RuleApplicability",
    "RuleContext",
    "RuleResult",
    "RuleRegistry",
    "RuleDependencies",
    "RULE_FACTORIES",
    "applies_to",
    "build_issue",
    "build_result",
    "build_registry",
    "degraded_result",
]
