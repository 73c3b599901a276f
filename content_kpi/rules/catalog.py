"""Content KPI Engine — Rule Catalog.

Static registration table: every known rule id and the constructor that
builds it. build_registry() turns the table into a RuleRegistry once at
startup and applies per-rule overrides from configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from content_kpi.config import RulesConfig
from content_kpi.errors import ConfigurationError
from content_kpi.rules.authority import CitingSourcesRule, ExpertAuthorityRule
from content_kpi.rules.base import Rule
from content_kpi.rules.brand import BrandAlignmentRule, KeywordAlignmentRule
from content_kpi.rules.freshness import DateSignalsRule, TimelinessRule
from content_kpi.rules.registry import RuleRegistry
from content_kpi.rules.structure import ListsTablesRule, MainHeadingRule, SubheadingsRule
from content_kpi.rules.technical import HttpsSecurityRule, StatusCodeRule
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleDependencies:
    """Collaborators handed to rule constructors.

    Attributes:
        ai_client: AIClient for LLM-backed rules (None = heuristics only).
        content_length: Characters of clean text sent to the reasoning service.
    """

    ai_client: Any = None
    content_length: int = 8000


RULE_FACTORIES: dict[str, Callable[[RuleDependencies], Rule]] = {
    # freshness
    "date-signals": lambda deps: DateSignalsRule(),
    "timeliness": lambda deps: TimelinessRule(),
    # structure
    "main-heading": lambda deps: MainHeadingRule(),
    "subheadings": lambda deps: SubheadingsRule(),
    "lists-tables": lambda deps: ListsTablesRule(),
    # authority
    "citing-sources": lambda deps: CitingSourcesRule(),
    "expert-authority": lambda deps: ExpertAuthorityRule(
        deps.ai_client, content_length=deps.content_length
    ),
    # brand
    "keyword-alignment": lambda deps: KeywordAlignmentRule(),
    "brand-alignment": lambda deps: BrandAlignmentRule(
        deps.ai_client, content_length=deps.content_length
    ),
    # technical
    "status-code": lambda deps: StatusCodeRule(),
    "https-security": lambda deps: HttpsSecurityRule(),
}


def build_registry(
    rules_config: Optional[RulesConfig] = None,
    deps: Optional[RuleDependencies] = None,
    name: str = "default",
) -> RuleRegistry:
    """Build a registry holding every catalogued rule.

    Args:
        rules_config: Per-rule weight/enabled overrides.
        deps: Collaborators for rule constructors.
        name: Registry label for logs.

    Returns:
        A populated RuleRegistry.

    Raises:
        ConfigurationError: If an override names an unknown rule or sets
            a negative weight.
    """
    deps = deps or RuleDependencies()
    overrides = rules_config.overrides if rules_config is not None else {}

    unknown = sorted(set(overrides) - set(RULE_FACTORIES))
    if unknown:
        raise ConfigurationError(f"Overrides for unknown rules: {', '.join(unknown)}")

    registry = RuleRegistry(name=name)
    for rule_id, factory in RULE_FACTORIES.items():
        registry.register(factory(deps))

    for rule_id, override in overrides.items():
        if override.weight is not None:
            registry.set_weight(rule_id, override.weight)
        if override.enabled is not None:
            registry.set_enabled(rule_id, override.enabled)

    logger.info("Rule registry '%s' built: %s", name, registry.summary())
    return registry
