"""Content KPI Engine — Rule Registry.

Holds the rules of one engine instance, grouped by dimension and ordered
by priority (highest first, registration order on ties). Registries are
plain objects passed to whoever needs them; there is no global registry.
"""

from __future__ import annotations

from typing import Any, Optional

from content_kpi.errors import ConfigurationError
from content_kpi.rules.base import EXECUTION_SCOPES, Rule, RuleContext, applies_to
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


class RuleRegistry:
    """Stores rules by id and by dimension.

    Attributes:
        name: Label used in log messages.
    """

    def __init__(self, name: str = "default") -> None:
        """Initialize an empty registry.

        Args:
            name: Label used in log messages.
        """
        self.name = name
        self._rules: dict[str, Rule] = {}
        self._by_dimension: dict[str, list[Rule]] = {}

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def register(self, rule: Rule) -> None:
        """Add a rule, replacing any rule with the same id.

        The rule is inserted into its dimension list after every rule of
        equal or higher priority, keeping the list sorted by priority
        descending and stable on ties.

        Args:
            rule: The rule to register.

        Raises:
            ConfigurationError: If the rule has a negative weight or an
                unknown execution scope.
        """
        if rule.weight < 0:
            raise ConfigurationError(f"Rule '{rule.id}' has negative weight {rule.weight}")
        if rule.execution_scope not in EXECUTION_SCOPES:
            raise ConfigurationError(
                f"Rule '{rule.id}' has unknown execution scope '{rule.execution_scope}'"
            )

        previous = self._rules.get(rule.id)
        if previous is not None:
            self._by_dimension[previous.dimension].remove(previous)
            logger.debug("Replacing rule: %s", rule.id)

        self._rules[rule.id] = rule
        bucket = self._by_dimension.setdefault(rule.dimension, [])
        index = len(bucket)
        for i, existing in enumerate(bucket):
            if existing.priority < rule.priority:
                index = i
                break
        bucket.insert(index, rule)

        logger.debug(
            "Registered rule: %s (%s, priority=%d, weight=%.2f)",
            rule.id, rule.dimension, rule.priority, rule.weight,
        )

    def get(self, rule_id: str) -> Optional[Rule]:
        """Return a rule by id, or None."""
        return self._rules.get(rule_id)

    def all_rules(self) -> list[Rule]:
        """All rules, dimension by dimension in priority order."""
        return [rule for bucket in self._by_dimension.values() for rule in bucket]

    def dimensions(self) -> list[str]:
        """Dimensions that have at least one rule, in first-registered order."""
        return [d for d, bucket in self._by_dimension.items() if bucket]

    def get_rules_for_dimension(
        self,
        dimension: str,
        context: RuleContext,
        execution_scope: str = "page",
    ) -> list[Rule]:
        """Enabled rules of a dimension that apply to a context.

        Filters by exact execution scope first, then by applicability.
        Neither the context nor the rules are modified.

        Args:
            dimension: Dimension name.
            context: The unit being scored.
            execution_scope: 'page' or 'domain'.

        Returns:
            Applicable rules in priority order.
        """
        return [
            rule
            for rule in self._by_dimension.get(dimension, [])
            if rule.enabled
            and rule.execution_scope == execution_scope
            and applies_to(rule, context)
        ]

    def _require(self, rule_id: str) -> Rule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise ConfigurationError(f"Rule '{rule_id}' not found")
        return rule

    def set_enabled(self, rule_id: str, enabled: bool) -> None:
        """Enable or disable a rule.

        Raises:
            ConfigurationError: If the rule is unknown.
        """
        self._require(rule_id).enabled = enabled
        logger.info("%s rule: %s", "Enabled" if enabled else "Disabled", rule_id)

    def set_weight(self, rule_id: str, weight: float) -> None:
        """Change a rule's weight.

        Raises:
            ConfigurationError: If the rule is unknown or weight is negative.
        """
        if weight < 0:
            raise ConfigurationError(f"Weight for '{rule_id}' must be >= 0, got {weight}")
        rule = self._require(rule_id)
        logger.info("Rule %s weight: %.2f → %.2f", rule_id, rule.weight, weight)
        rule.weight = weight

    def summary(self) -> dict[str, Any]:
        """Rule counts for startup logs."""
        return {
            "total": len(self._rules),
            "enabled": sum(1 for r in self._rules.values() if r.enabled),
            "by_dimension": {d: len(b) for d, b in self._by_dimension.items() if b},
        }
