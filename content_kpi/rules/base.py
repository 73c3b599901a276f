"""Content KPI Engine — Rule Contract.

A rule is the atomic scoring unit: it reads a RuleContext and returns a
RuleResult for one dimension. Rules satisfy the Rule protocol; there is
no base class. Shared behaviour lives in the free helpers below:

  - applies_to():      applicability predicate (all / category / domain)
  - build_issue():     construct an Issue
  - build_result():    construct a RuleResult with contribution filled in
  - degraded_result(): labelled zero-weight result for a skipped rule

Rules must not mutate the context or another rule's result. The only
side effect allowed in evaluate() is a call through the AI client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

from content_kpi.extraction.signals import BrandContext, PageSignals

# ── Constants ────────────────────────────────────────────
SEVERITIES = ("critical", "high", "medium", "low")
EXECUTION_SCOPES = ("page", "domain")
APPLICABILITY_SCOPES = ("all", "category", "domain")
DEFAULT_PASS_THRESHOLD = 50


# ═══════════════════════════════════════════════════════════
# Data Types
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RuleApplicability:
    """Which contexts a rule applies to.

    Attributes:
        scope: 'all', 'category' or 'domain'.
        categories: Page categories accepted when scope is 'category'.
        domains: Domain fragments matched when scope is 'domain'.
    """

    scope: str = "all"
    categories: tuple[str, ...] = ()
    domains: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may read about one unit.

    Attributes:
        project_id: Owning project.
        url: Page URL (or domain root for domain units).
        content: Raw HTML.
        signals: Extracted PageSignals.
        clean_content: Boilerplate-stripped text, bounded length.
        metadata: Fetch metadata.
        category: Page category (e.g. 'blog', 'product').
        brand: Brand the page is scored against.
        status_code: HTTP status of the fetch.
        fetched_at: When the page was fetched.
    """

    project_id: str
    url: str
    content: str = ""
    signals: PageSignals = field(default_factory=PageSignals)
    clean_content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    category: str = ""
    brand: Optional[BrandContext] = None
    status_code: int = 200
    fetched_at: Optional[datetime] = None

    @property
    def domain(self) -> str:
        """Host part of the URL, lower-cased."""
        return urlparse(self.url).netloc.lower()


@dataclass
class Issue:
    """A problem found by a rule.

    Attributes:
        severity: 'critical', 'high', 'medium' or 'low'.
        description: What is wrong.
        recommendation: How to fix it.
        affected_elements: Optional element descriptions.
        rule_id: Originating rule, set when issues are aggregated.
    """

    severity: str
    description: str
    recommendation: str
    affected_elements: Optional[list[str]] = None
    rule_id: Optional[str] = None


@dataclass
class RuleResult:
    """Outcome of one rule evaluation.

    Attributes:
        rule_id: Rule that produced the result.
        score: 0-100.
        max_score: Upper bound of score (100).
        weight: Weight of the rule when it was evaluated.
        contribution: score × weight.
        passed: Whether the score cleared the rule's pass threshold.
        evidence: Human-readable findings; never empty.
        issues: Problems found.
        details: Rule-specific data.
    """

    rule_id: str
    score: float
    max_score: float
    weight: float
    contribution: float
    passed: bool
    evidence: list[str]
    issues: list[Issue] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.evidence:
            raise ValueError(f"RuleResult for '{self.rule_id}' has no evidence")
        if not 0 <= self.score <= 100:
            raise ValueError(f"RuleResult score out of range: {self.score}")

    @property
    def skipped(self) -> bool:
        """Whether this is a degraded result for a skipped rule."""
        return bool(self.details.get("skipped"))


@runtime_checkable
class Rule(Protocol):
    """Contract every scoring rule satisfies."""

    id: str
    name: str
    dimension: str
    execution_scope: str
    weight: float
    priority: int
    enabled: bool
    applicability: RuleApplicability
    requires_invoker: bool
    gate_threshold: Optional[int]

    def estimate_cost(self, context: RuleContext) -> float:
        """Estimated reasoning-service cost of one evaluation (0 if none)."""
        ...

    async def evaluate(self, context: RuleContext) -> RuleResult:
        """Score the context."""
        ...


# ═══════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════


def applies_to(rule: Rule, context: RuleContext) -> bool:
    """Whether a rule applies to a context.

    'all' always applies, 'category' requires the context category in
    the rule's categories, 'domain' requires one of the rule's domain
    fragments to occur in the context's domain. Unknown scopes never
    apply.
    """
    applicability = rule.applicability
    if applicability.scope == "all":
        return True
    if applicability.scope == "category":
        return context.category in applicability.categories
    if applicability.scope == "domain":
        domain = context.domain
        return any(fragment.lower() in domain for fragment in applicability.domains)
    return False


def build_issue(
    severity: str,
    description: str,
    recommendation: str,
    affected_elements: Optional[list[str]] = None,
) -> Issue:
    """Construct an Issue."""
    return Issue(
        severity=severity,
        description=description,
        recommendation=recommendation,
        affected_elements=affected_elements,
    )


def build_result(
    rule: Rule,
    score: float,
    evidence: list[str],
    details: Optional[dict[str, Any]] = None,
    issues: Optional[list[Issue]] = None,
    max_score: float = 100,
    pass_threshold: float = DEFAULT_PASS_THRESHOLD,
) -> RuleResult:
    """Construct a RuleResult for a rule.

    The score is clamped to [0, max_score] and scaled to 0-100, and the
    contribution is score × the rule's current weight. Empty evidence is
    replaced by a line stating the score.
    """
    clamped = max(0.0, min(float(max_score), float(score)))
    normalized = round(clamped / max_score * 100, 2) if max_score else 0.0
    if not evidence:
        evidence = [f"{rule.name}: scored {normalized:.0f}/100 with no specific findings"]
    return RuleResult(
        rule_id=rule.id,
        score=normalized,
        max_score=100,
        weight=rule.weight,
        contribution=normalized * rule.weight,
        passed=normalized >= pass_threshold,
        evidence=list(evidence),
        issues=list(issues or []),
        details=dict(details or {}),
    )


def degraded_result(rule: Rule, reason: str, message: str) -> RuleResult:
    """A zero-weight result for a rule that was not allowed to run.

    Args:
        rule: The skipped rule.
        reason: Short tag, e.g. 'budget' or 'breaker'.
        message: Why the rule was skipped.

    Returns:
        A RuleResult with score 0, weight 0 and evidence 'skipped: <reason>'.
    """
    return RuleResult(
        rule_id=rule.id,
        score=0,
        max_score=100,
        weight=0.0,
        contribution=0.0,
        passed=False,
        evidence=[f"skipped: {reason}", message],
        issues=[build_issue(
            "medium",
            f"{rule.name} was not evaluated ({reason}): {message}",
            "Raise the analysis budget or re-run the page once spend is reset",
        )],
        details={"skipped": True, "skip_reason": reason},
    )
