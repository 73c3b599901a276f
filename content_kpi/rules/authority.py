"""Content KPI Engine — Authority Rules.

  - citing-sources:    links to distinct external sources
  - expert-authority:  named, credentialed authorship (reasoning service)

expert-authority asks the reasoning service first. When both targets
fail it scores from on-page author signals instead and says so in its
evidence.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from content_kpi.analyzer.prompts import build_expert_authority_request
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

DIMENSION = "authority"

_AUTHORITATIVE_SUFFIXES = (".gov", ".edu", ".org", ".int")
_BYLINE = re.compile(r"\b(?:written by|by|author:?)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+", re.UNICODE)
_CREDENTIALS = re.compile(
    r"\b(?:PhD|Ph\.D\.|MD|M\.D\.|CPA|MBA|professor|certified|years of experience|founder|engineer)\b",
    re.IGNORECASE,
)
_FIRST_HAND = re.compile(r"\b(?:we tested|i tested|in our experience|we measured|i've used|we found)\b", re.IGNORECASE)


class CitingSourcesRule:
    """Rewards outbound links to distinct external domains."""

    id = "citing-sources"
    name = "Citing Sources"
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
        domains = context.signals.external_domains
        issues: list[Issue] = []

        if len(domains) >= 5:
            score = 90
        elif len(domains) >= 3:
            score = 75
        elif domains:
            score = 50
        else:
            score = 10
            issues.append(build_issue(
                "medium",
                "No external sources cited",
                "Link to primary sources, studies or official documentation",
            ))

        evidence = [f"{len(domains)} distinct external domain(s) linked"]
        authoritative = [d for d in domains if d.endswith(_AUTHORITATIVE_SUFFIXES)]
        if authoritative:
            score += 10
            evidence.append(f"Authoritative sources: {', '.join(authoritative[:5])} (+10)")

        return build_result(
            self, score, evidence, issues=issues,
            details={"external_domains": domains[:20], "authoritative": authoritative},
        )


class ExpertAuthorityRule:
    """Named expert authorship, judged by the reasoning service.

    Attributes:
        ai_client: AIClient used for the judgement (None = heuristic only).
        content_length: Characters of clean text sent in the prompt.
    """

    id = "expert-authority"
    name = "Expert Authority"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 5
    applicability = RuleApplicability(
        scope="category", categories=("blog", "article", "guide", "case-study", "")
    )
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
        return build_expert_authority_request(
            context.url,
            context.signals.title,
            context.clean_content[: self.content_length],
        )

    def estimate_cost(self, context: RuleContext) -> float:
        if self.ai_client is None:
            return 0.0
        return self.ai_client.estimate_cost(self._request(context))

    async def evaluate(self, context: RuleContext) -> RuleResult:
        if self.ai_client is None:
            return self._heuristic(context, "no reasoning service configured")

        try:
            answer = await self.ai_client.analyze(self._request(context))
        except InvocationError as e:
            logger.warning("expert-authority falling back to heuristic for %s: %s", context.url, e)
            return self._heuristic(context, f"reasoning service unavailable: {e}")

        score = clamp(to_int(answer.get("score")))
        credentials = to_list(answer.get("credentials"))
        evidence = [f"Reasoning service ({answer.get('_provider', 'unknown')}): {answer.get('reasoning', '')}".strip()]
        if credentials:
            evidence.append(f"Credentials: {'; '.join(credentials[:5])}")

        issues: list[Issue] = []
        if not answer.get("has_named_author"):
            issues.append(build_issue(
                "medium",
                "No named author",
                "Credit a real author with a short bio and relevant credentials",
            ))

        return build_result(
            self, score, evidence, issues=issues,
            details={
                "method": "llm",
                "provider": answer.get("_provider"),
                "has_named_author": bool(answer.get("has_named_author")),
                "first_hand_experience": bool(answer.get("first_hand_experience")),
                "credentials": credentials,
            },
        )

    def _heuristic(self, context: RuleContext, reason: str) -> RuleResult:
        """Score from bylines, Person markup and credential keywords."""
        text = context.clean_content
        evidence = [f"Heuristic fallback ({reason})"]
        score = 0

        has_person = any("Person" in t for t in context.signals.schema_types)
        byline = _BYLINE.search(text)
        if has_person or byline:
            score += 40
            evidence.append(
                "Author markup found (+40)" if has_person else f"Byline: '{byline.group(0)}' (+40)"
            )
        credentials = sorted({m.group(0).lower() for m in _CREDENTIALS.finditer(text)})
        if credentials:
            score += 30
            evidence.append(f"Credential keywords: {', '.join(credentials[:5])} (+30)")
        if _FIRST_HAND.search(text):
            score += 20
            evidence.append("First-hand experience language (+20)")

        issues: list[Issue] = []
        if not (has_person or byline):
            issues.append(build_issue(
                "medium",
                "No named author",
                "Credit a real author with a short bio and relevant credentials",
            ))

        return build_result(
            self, score, evidence, issues=issues,
            details={"method": "heuristic", "fallback_reason": reason},
        )
