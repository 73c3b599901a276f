"""Content KPI Engine — Technical Rules.

  - status-code:     the page was fetched successfully (gate rule)
  - https-security:  the site is served over HTTPS without mixed content
                     (domain scope, evaluated once per domain)
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from content_kpi.rules.base import (
    Issue,
    RuleApplicability,
    RuleContext,
    RuleResult,
    build_issue,
    build_result,
)

DIMENSION = "technical"

_MIXED_CONTENT = re.compile(r"""<(?:img|script|link|iframe|source)\b[^>]*(?:src|href)\s*=\s*["']http://""", re.IGNORECASE)


class StatusCodeRule:
    """Maps the HTTP status of the fetch to a score."""

    id = "status-code"
    name = "HTTP Status"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 30
    applicability = RuleApplicability()
    requires_invoker = False

    def __init__(
        self, weight: float = 1.0, enabled: bool = True, gate_threshold: Optional[int] = 50
    ) -> None:
        self.weight = weight
        self.enabled = enabled
        self.gate_threshold = gate_threshold

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        status = context.status_code
        issues: list[Issue] = []
        pass_threshold = self.gate_threshold if self.gate_threshold is not None else 50

        if status == 200:
            score, note = 100, "OK"
        elif 200 <= status < 300:
            score, note = 90, "success without standard body"
        elif 300 <= status < 400:
            score, note = 60, "redirect"
            issues.append(build_issue(
                "medium",
                f"Page answers with a redirect ({status})",
                "Link to the final URL directly",
            ))
        else:
            score, note = 0, "client error" if 400 <= status < 500 else "server error"
            issues.append(build_issue(
                "critical",
                f"Page returned HTTP {status}",
                "Fix or remove the page; broken pages cannot rank",
            ))

        return build_result(
            self, score, [f"HTTP {status} ({note})"], issues=issues,
            details={"status_code": status}, pass_threshold=pass_threshold,
        )


class HttpsSecurityRule:
    """HTTPS with no insecure sub-resources."""

    id = "https-security"
    name = "HTTPS Security"
    dimension = DIMENSION
    execution_scope = "domain"
    priority = 20
    applicability = RuleApplicability()
    requires_invoker = False
    gate_threshold: Optional[int] = None

    def __init__(self, weight: float = 1.0, enabled: bool = True) -> None:
        self.weight = weight
        self.enabled = enabled

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        scheme = urlparse(context.url).scheme.lower()
        if scheme != "https":
            return build_result(
                self, 0, [f"Domain {context.domain} served over {scheme or 'unknown scheme'}"],
                issues=[build_issue(
                    "critical",
                    "Site is not served over HTTPS",
                    "Install a TLS certificate and redirect all HTTP traffic to HTTPS",
                )],
                details={"https": False},
            )

        insecure = len(_MIXED_CONTENT.findall(context.content))
        evidence = [f"Domain {context.domain} served over HTTPS"]
        issues: list[Issue] = []
        score = 100
        if insecure:
            score = max(60, 100 - 10 * insecure)
            evidence.append(f"{insecure} insecure sub-resource(s) loaded over http:// (-{100 - score})")
            issues.append(build_issue(
                "high",
                f"Mixed content: {insecure} resource(s) over HTTP",
                "Serve every image, script and stylesheet over HTTPS",
            ))

        return build_result(
            self, score, evidence, issues=issues,
            details={"https": True, "mixed_content": insecure},
        )
