"""Content KPI Engine — Freshness Rules.

  - date-signals: does the page expose machine-readable dates?
  - timeliness:   how long ago was the page published or updated?
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from content_kpi.rules.base import (
    Issue,
    RuleApplicability,
    RuleContext,
    RuleResult,
    build_issue,
    build_result,
)

DIMENSION = "freshness"

# Points by where the date was found; structured sources rank highest.
_SOURCE_POINTS = {
    "metadata": 60,
    "json-ld": 60,
    "meta tag": 55,
    "time element": 40,
    "content": 20,
}

# (max age in days, score, label)
_AGE_BANDS = (
    (30, 100, "updated within the last month"),
    (180, 75, "updated within the last 6 months"),
    (365, 45, "less than a year old"),
)
_STALE_SCORE = 15


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime string into an aware datetime.

    Returns None for empty or unparseable values.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(text[:10])
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DateSignalsRule:
    """Scores the presence and quality of publish/modified date markup."""

    id = "date-signals"
    name = "Date Signals"
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

        score = _SOURCE_POINTS.get(signals.date_source, 0)
        if score:
            evidence.append(f"Date found in {signals.date_source} (+{score})")
        else:
            evidence.append("No publish or modified date found")
            issues.append(build_issue(
                "high",
                "Page exposes no publication date",
                "Add datePublished/dateModified to JSON-LD or article:published_time meta tags",
            ))

        if signals.modified_date:
            score += 25
            evidence.append(f"Modified date present: {signals.modified_date} (+25)")
        elif score:
            issues.append(build_issue(
                "low",
                "No last-modified date",
                "Expose dateModified so readers and crawlers see when content was updated",
            ))

        if signals.update_indicators:
            score += 15
            evidence.append(
                f"Update markers in text: {', '.join(signals.update_indicators)} (+15)"
            )

        return build_result(
            self, score, evidence, issues=issues,
            details={
                "date_source": signals.date_source,
                "publish_date": signals.publish_date,
                "modified_date": signals.modified_date,
            },
        )


class TimelinessRule:
    """Scores content age from the most recent known date."""

    id = "timeliness"
    name = "Content Timeliness"
    dimension = DIMENSION
    execution_scope = "page"
    priority = 5
    applicability = RuleApplicability()
    requires_invoker = False
    gate_threshold: Optional[int] = None

    def __init__(self, weight: float = 1.5, enabled: bool = True) -> None:
        self.weight = weight
        self.enabled = enabled

    def estimate_cost(self, context: RuleContext) -> float:
        return 0.0

    async def evaluate(self, context: RuleContext) -> RuleResult:
        signals = context.signals
        dated = parse_date(signals.modified_date) or parse_date(signals.publish_date)
        if dated is None:
            return build_result(
                self, 0,
                ["Content age unknown: no parseable date"],
                issues=[build_issue(
                    "medium",
                    "Cannot determine content age",
                    "Publish a machine-readable date so freshness can be assessed",
                )],
                details={"age_days": None},
            )

        now = context.fetched_at or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        age_days = max(0, (now - dated).days)

        for max_age, score, label in _AGE_BANDS:
            if age_days <= max_age:
                return build_result(
                    self, score,
                    [f"Content {label} ({age_days} days ago)"],
                    details={"age_days": age_days, "date": dated.date().isoformat()},
                )

        return build_result(
            self, _STALE_SCORE,
            [f"Content is over a year old ({age_days} days, dated {dated.date().isoformat()})"],
            issues=[build_issue(
                "high",
                "Content appears outdated",
                "Update content to maintain search relevance",
            )],
            details={"age_days": age_days, "date": dated.date().isoformat()},
        )
