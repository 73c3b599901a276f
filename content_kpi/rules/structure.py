"""Content KPI Engine — Structure Rules.

  - main-heading:  exactly one descriptive H1 (gate rule)
  - subheadings:   H2/H3 outline, density and hierarchy
  - lists-tables:  scannable formatting for longer content
"""

from __future__ import annotations

import re
from typing import Optional

from content_kpi.rules.base import (
    Issue,
    RuleApplicability,
    RuleContext,
    RuleResult,
    build_issue,
    build_result,
)

DIMENSION = "structure"

_GENERIC_HEADINGS = {
    "introduction", "overview", "conclusion", "summary", "more", "details",
    "other", "misc", "section", "content", "info", "information",
}
_WORD = re.compile(r"\w+", re.UNICODE)


def _words(text: str) -> set[str]:
    return {w.lower() for w in _WORD.findall(text) if len(w) > 2}


class MainHeadingRule:
    """One H1, of sensible length, aligned with the page title.

    Scores below the gate threshold cap the whole structure dimension.
    """

    id = "main-heading"
    name = "Main Heading"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 20
    applicability = RuleApplicability()
    requires_invoker = False

    def __init__(
        self, weight: float = 1.0, enabled: bool = True, gate_threshold: Optional[int] = 40
    ) -> None:
        self.weight = weight
        self.enabled = enabled
        self.gate_threshold = gate_threshold

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    def _quality(self, h1: str, title: str, evidence: list[str]) -> int:
        """Up to 50 points for length and title alignment."""
        points = 0
        length = len(h1)
        if length < 10:
            points += 5
            evidence.append(f"H1 is very short ({length} chars) (+5)")
        elif length > 70:
            points += 15
            evidence.append(f"H1 is quite long ({length} chars) (+15)")
        else:
            points += 25
            evidence.append(f"H1 length is good ({length} chars) (+25)")

        h1_words, title_words = _words(h1), _words(title)
        if h1_words and title_words:
            overlap = len(h1_words & title_words) / len(h1_words)
            if overlap >= 0.5:
                points += 25
                evidence.append("H1 aligns with the page title (+25)")
            else:
                points += 10
                evidence.append("H1 differs significantly from the title (+10)")
        return points

    async def evaluate(self, context: RuleContext) -> RuleResult:
        signals = context.signals
        evidence: list[str] = []
        issues: list[Issue] = []
        pass_threshold = self.gate_threshold if self.gate_threshold is not None else 50

        if not signals.h1:
            issues.append(build_issue(
                "critical",
                "No H1 heading found on page",
                "Add a single descriptive H1 that states the page topic",
            ))
            return build_result(
                self, 0, ["No H1 heading found on page"], issues=issues,
                details={"h1_count": 0}, pass_threshold=pass_threshold,
            )

        if len(signals.h1) == 1:
            evidence.append("Single H1 heading found (+50)")
            score = 50 + self._quality(signals.h1[0], signals.title, evidence)
        else:
            evidence.append(f"Found {len(signals.h1)} H1 headings, should have only 1 (+30)")
            issues.append(build_issue(
                "medium",
                f"Multiple H1 headings ({len(signals.h1)})",
                "Keep one H1 and demote the others to H2",
                affected_elements=list(signals.h1),
            ))
            score = 30 + round(self._quality(signals.h1[0], signals.title, evidence) * 0.7)

        return build_result(
            self, score, evidence, issues=issues,
            details={"h1_count": len(signals.h1), "h1": signals.h1[0]},
            pass_threshold=pass_threshold,
        )


class SubheadingsRule:
    """H2/H3 outline quality."""

    id = "subheadings"
    name = "Subheadings"
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
        signals = context.signals
        evidence: list[str] = []
        issues: list[Issue] = []
        score = 0

        levels = [level for level, _ in signals.headings]
        h2_count = levels.count(2)
        if h2_count:
            score += 40
            evidence.append(f"Found {h2_count} H2 headings (+40)")
        else:
            evidence.append("No H2 headings found")
            issues.append(build_issue(
                "high",
                "Missing H2 subheadings",
                "Add H2 headings to create clear content structure",
            ))

        # Expect roughly one heading every 300 words
        if signals.word_count > 500:
            per_300 = len(signals.headings) / (signals.word_count / 300)
            if 0.8 <= per_300 <= 2:
                score += 30
                evidence.append("Good ratio of headings to content (+30)")
            elif per_300 < 0.5:
                score += 10
                evidence.append("Content could use more headings (+10)")
                issues.append(build_issue(
                    "low",
                    "Long sections without subheadings",
                    "Add more subheadings to break up long content",
                ))
            elif per_300 > 3:
                score += 10
                evidence.append("Too many headings for content length (+10)")
            else:
                score += 20
                evidence.append("Acceptable heading density (+20)")
        else:
            score += 20
            evidence.append(f"Short content ({signals.word_count} words), density not assessed (+20)")

        if 2 in levels and 3 in levels:
            score += 20
            evidence.append("Uses multiple heading levels (H2, H3) (+20)")
            if levels.index(3) < levels.index(2):
                evidence.append("Some H3s appear before any H2")
        elif 3 in levels:
            issues.append(build_issue(
                "medium",
                "H3 headings without H2s",
                "Nest H3 headings under H2 sections",
            ))

        texts = [text for _, text in signals.headings]
        generic = [t for t in texts if t.strip().lower() in _GENERIC_HEADINGS]
        if texts and not generic:
            score += 10
            evidence.append("All headings are descriptive (+10)")
        elif generic:
            issues.append(build_issue(
                "low",
                f"{len(generic)} generic heading(s)",
                "Replace generic headings with descriptive ones",
                affected_elements=generic,
            ))

        return build_result(
            self, score, evidence, issues=issues,
            details={"heading_count": len(signals.headings), "h2_count": h2_count},
        )


class ListsTablesRule:
    """Lists and tables that make content scannable."""

    id = "lists-tables"
    name = "Lists & Tables"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 0
    applicability = RuleApplicability()
    requires_invoker = False
    gate_threshold: Optional[int] = None

    def __init__(self, weight: float = 0.75, enabled: bool = True) -> None:
        self.weight = weight
        self.enabled = enabled

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        signals = context.signals
        evidence: list[str] = []
        issues: list[Issue] = []
        score = 0

        if signals.list_count >= 3:
            score += 60
            evidence.append(f"{signals.list_count} lists (+60)")
        elif signals.list_count:
            score += 50
            evidence.append(f"{signals.list_count} list(s) (+50)")

        if signals.table_count:
            score += 40
            evidence.append(f"{signals.table_count} table(s) (+40)")

        if not score:
            if signals.word_count > 800:
                evidence.append(f"No lists or tables in {signals.word_count} words")
                issues.append(build_issue(
                    "medium",
                    "Long content without lists or tables",
                    "Use bullet lists or comparison tables for steps, features and data",
                ))
            else:
                score = 50
                evidence.append("Short content without lists or tables (neutral)")

        return build_result(
            self, score, evidence, issues=issues,
            details={"lists": signals.list_count, "tables": signals.table_count},
        )
