"""Content KPI Engine — Brand Rules.

  - keyword-alignment: brand keywords and brand name present in the text
  - brand-alignment:   key attributes conveyed (reasoning service)

Pages scored without a brand context get a neutral 50 from both rules.
"""

from __future__ import annotations

from typing import Any, Optional

from content_kpi.analyzer.prompts import build_brand_alignment_request
from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.analyzer.response_parser import clamp, to_int, to_list
from content_kpi.errors import InvocationError
from content_kpi.rules.base import (
    Issue,
    RuleApplicability,
    RuleContext,
    RuleResult,
    build_issue,
    build_result,
)
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

DIMENSION = "brand"
_NEUTRAL = 50


class KeywordAlignmentRule:
    """Share of brand keywords the page covers, plus brand mentions."""

    id = "keyword-alignment"
    name = "Keyword Alignment"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 10
    applicability = RuleApplicability()
    requires_invoker = False
    gate_threshold: Optional[int] = None

    def __init__(self, weight: float = 1.0, enabled: bool = True) -> None:
        self.weight = weight
        self.enabled = enabled

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        brand = context.brand
        signals = context.signals
        if brand is None or not brand.keywords:
            return build_result(
                self, _NEUTRAL, ["No brand keywords configured (neutral score)"],
                details={"keywords": 0},
            )

        hits = signals.keyword_hits
        missing = [k for k in brand.keywords if k not in hits]
        coverage = len(hits) / len(brand.keywords)
        score = coverage * 80
        evidence = [f"{len(hits)}/{len(brand.keywords)} brand keywords covered (+{coverage * 80:.0f})"]

        if signals.brand_mentions:
            score += 20
            evidence.append(f"Brand '{brand.brand_name}' mentioned {signals.brand_mentions}x (+20)")

        issues: list[Issue] = []
        if missing:
            issues.append(build_issue(
                "low" if coverage >= 0.5 else "medium",
                f"{len(missing)} brand keyword(s) not covered",
                "Work the missing keywords naturally into headings and body copy",
                affected_elements=missing,
            ))

        return build_result(
            self, score, evidence, issues=issues,
            details={"keywords": len(brand.keywords), "hits": hits, "missing": missing},
        )


class BrandAlignmentRule:
    """How well the page conveys the brand's key attributes.

    Attributes:
        ai_client: AIClient used for the judgement (None = heuristic only).
        content_length: Characters of clean text sent in the prompt.
    """

    id = "brand-alignment"
    name = "Brand Alignment"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 5
    applicability = RuleApplicability()
    gate_threshold: Optional[int] = None

    def __init__(
        self,
        ai_client: Any = None,
        weight: float = 1.5,
        enabled: bool = True,
        content_length: int = 8000,
    ) -> None:
        self.ai_client = ai_client
        self.weight = weight
        self.enabled = enabled
        self.content_length = content_length

    @property
    def requires_invoker(self) -> bool:
        return self.ai_client is not None

    def _request(self, context: RuleContext) -> ReasoningRequest:
        return build_brand_alignment_request(
            context.url, context.clean_content[: self.content_length], context.brand,
        )

    def estimate_cost(self, context: RuleContext) -> float:
        if self.ai_client is None or context.brand is None:
            return 0.0
        return self.ai_client.estimate_cost(self._request(context))

    async def evaluate(self, context: RuleContext) -> RuleResult:
        if context.brand is None:
            return build_result(
                self, _NEUTRAL, ["No brand context for this page (neutral score)"],
                details={"method": "none"},
            )
        if self.ai_client is None:
            return self._heuristic(context, "no reasoning service configured")

        try:
            answer = await self.ai_client.analyze(self._request(context))
        except InvocationError as e:
            logger.warning("brand-alignment falling back to heuristic for %s: %s", context.url, e)
            return self._heuristic(context, f"reasoning service unavailable: {e}")

        covered = to_list(answer.get("attributes_covered"))
        missing = to_list(answer.get("attributes_missing"))
        competitors = to_list(answer.get("competitor_mentions"))
        evidence = [f"Reasoning service ({answer.get('_provider', 'unknown')}): {answer.get('reasoning', '')}".strip()]
        if covered:
            evidence.append(f"Attributes conveyed: {', '.join(covered)}")

        issues: list[Issue] = []
        if missing:
            issues.append(build_issue(
                "medium",
                f"Key brand attributes not conveyed: {', '.join(missing)}",
                "Reinforce the missing attributes with concrete claims or examples",
                affected_elements=missing,
            ))
        if competitors:
            issues.append(build_issue(
                "low",
                f"Competitors mentioned: {', '.join(competitors)}",
                "Make sure competitor mentions favour the brand",
            ))

        return build_result(
            self, clamp(to_int(answer.get("score"))), evidence, issues=issues,
            details={
                "method": "llm",
                "provider": answer.get("_provider"),
                "attributes_covered": covered,
                "attributes_missing": missing,
                "competitor_mentions": competitors,
            },
        )

    def _heuristic(self, context: RuleContext, reason: str) -> RuleResult:
        """Score from attribute and brand-name occurrences in the text."""
        brand = context.brand
        text = context.clean_content.lower()
        evidence = [f"Heuristic fallback ({reason})"]

        covered = [a for a in brand.key_attributes if a.lower() in text]
        missing = [a for a in brand.key_attributes if a.lower() not in text]
        if brand.key_attributes:
            attr_points = len(covered) / len(brand.key_attributes) * 70
            evidence.append(
                f"{len(covered)}/{len(brand.key_attributes)} key attributes mentioned (+{attr_points:.0f})"
            )
        else:
            attr_points = 35
            evidence.append("No key attributes configured (+35)")

        brand_points = 30 if brand.brand_name.lower() in text else 0
        if brand_points:
            evidence.append(f"Brand '{brand.brand_name}' mentioned (+30)")

        competitors = [c for c in brand.competitors if c.lower() in text]
        penalty = 10 * len(competitors)
        if competitors:
            evidence.append(f"Competitors mentioned: {', '.join(competitors)} (-{penalty})")

        issues: list[Issue] = []
        if missing:
            issues.append(build_issue(
                "medium",
                f"Key brand attributes not mentioned: {', '.join(missing)}",
                "Reinforce the missing attributes with concrete claims or examples",
                affected_elements=missing,
            ))

        return build_result(
            self, attr_points + brand_points - penalty, evidence, issues=issues,
            details={
                "method": "heuristic",
                "fallback_reason": reason,
                "attributes_covered": covered,
                "attributes_missing": missing,
                "competitor_mentions": competitors,
            },
        )
