"""Content KPI Engine — Score Aggregation.

Combines the RuleResults of one dimension into a DimensionScore, and the
DimensionScores of one unit into a CompositeScore.

  - WeightedAggregator:    final = round(Σcontribution / Σweight)
  - ConditionalAggregator: the weighted score, capped by any gate rule
                           that scored below its threshold
  - compute_composite():   weighted mean of dimension scores
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from content_kpi.rules.base import Issue, RuleResult
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Constants ────────────────────────────────────────────
NO_RULES_EXPLANATION = "No applicable rules for this dimension"
NO_WEIGHT_EXPLANATION = "No weighted rule results"

SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

_BANDS = (
    (80, "excellent"),
    (60, "good"),
    (40, "moderate"),
    (20, "poor"),
)


def band(score: float) -> str:
    """Qualitative label for a 0-100 score."""
    for floor, label in _BANDS:
        if score >= floor:
            return label
    return "very poor"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Round and clamp to [0, 100]."""
    return max(0, min(100, round_half_up(value)))


# ═══════════════════════════════════════════════════════════
# Data Types
# ═══════════════════════════════════════════════════════════


@dataclass
class DimensionScore:
    """Aggregated score of one dimension for one unit.

    Attributes:
        dimension: Dimension name.
        final_score: 0-100.
        sub_scores: The RuleResults that were aggregated.
        issues: All issues, tagged with their rule id, most severe first.
        explanation: Human-readable summary.
        details: Calculation breakdown.
    """

    dimension: str
    final_score: int
    sub_scores: list[RuleResult] = field(default_factory=list)
    issues: list[Issue] = field(default_factory=list)
    explanation: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form for persistence."""
        return dataclasses.asdict(self)


@dataclass
class CompositeScore:
    """Overall score of one unit across dimensions.

    Attributes:
        global_score: Weighted mean of dimension scores, 0-100.
        dimensions: Dimension name → DimensionScore.
        weights: Dimension weights used for the mean.
        computed_at: UTC timestamp of the computation.
    """

    global_score: int
    dimensions: dict[str, DimensionScore] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)
    computed_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def skipped_rules(self) -> list[str]:
        """Ids of rules that were skipped (budget or breaker)."""
        return [
            r.rule_id
            for score in self.dimensions.values()
            for r in score.sub_scores
            if r.skipped
        ]

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form for persistence."""
        return {
            "global_score": self.global_score,
            "weights": dict(self.weights),
            "computed_at": self.computed_at,
            "dimensions": {name: s.final_score for name, s in self.dimensions.items()},
            "skipped_rules": self.skipped_rules,
        }


# ═══════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════


def collect_issues(results: Iterable[RuleResult]) -> list[Issue]:
    """Concatenate issues, tag each with its rule id, sort by severity.

    The sort is stable; unrecognized severities go last. Results are
    not modified: tagged copies are returned.
    """
    tagged = [
        dataclasses.replace(issue, rule_id=result.rule_id)
        for result in results
        for issue in result.issues
    ]
    return sorted(tagged, key=lambda i: SEVERITY_RANK.get(i.severity, len(SEVERITY_RANK)))


def explain(dimension: str, final_score: int, results: Sequence[RuleResult]) -> str:
    """Summary naming the top-2 contributors by contribution value."""
    top = sorted(
        (r for r in results if not r.skipped),
        key=lambda r: r.contribution,
        reverse=True,
    )[:2]
    head = f"{dimension.capitalize()} is {band(final_score)} ({final_score}/100)"
    if not top:
        return head
    drivers = ", ".join(f"{r.rule_id} {r.score:.0f} ({band(r.score)})" for r in top)
    return f"{head}. Main contributors: {drivers}"


def _weighted(results: Sequence[RuleResult]) -> tuple[Optional[int], float, float]:
    """(final score or None when Σweight is 0, Σcontribution, Σweight)."""
    total_weight = sum(r.weight for r in results)
    total_contribution = sum(r.contribution for r in results)
    if total_weight <= 0:
        return None, total_contribution, total_weight
    return clamp_score(total_contribution / total_weight), total_contribution, total_weight


# ═══════════════════════════════════════════════════════════
# Aggregators
# ═══════════════════════════════════════════════════════════


class WeightedAggregator:
    """Weighted average of rule scores."""

    name = "weighted"

    def aggregate(self, dimension: str, results: Sequence[RuleResult]) -> DimensionScore:
        """Aggregate the results of one dimension.

        Args:
            dimension: Dimension name.
            results: RuleResults in rule priority order.

        Returns:
            DimensionScore with final = round(Σcontribution / Σweight),
            0 when the list is empty or every weight is 0.
        """
        results = list(results)
        if not results:
            return DimensionScore(
                dimension=dimension,
                final_score=0,
                explanation=NO_RULES_EXPLANATION,
                details={"total_weight": 0.0, "total_contribution": 0.0},
            )

        final, total_contribution, total_weight = _weighted(results)
        details = {
            "total_weight": total_weight,
            "total_contribution": total_contribution,
            "skipped": [r.rule_id for r in results if r.skipped],
        }
        if final is None:
            return DimensionScore(
                dimension=dimension,
                final_score=0,
                sub_scores=results,
                issues=collect_issues(results),
                explanation=NO_WEIGHT_EXPLANATION,
                details=details,
            )

        return DimensionScore(
            dimension=dimension,
            final_score=final,
            sub_scores=results,
            issues=collect_issues(results),
            explanation=explain(dimension, final, results),
            details=details,
        )


class ConditionalAggregator:
    """Weighted average capped by failing gate rules.

    Each input is a (RuleResult, gate_threshold) pair. A result whose
    score is below its gate threshold caps the dimension at that score,
    whatever its weight. Skipped results never act as gates.
    """

    name = "conditional"

    def aggregate(
        self,
        dimension: str,
        gated: Sequence[Union[tuple[RuleResult, Optional[float]], RuleResult]],
    ) -> DimensionScore:
        """Aggregate (result, gate_threshold) pairs of one dimension.

        Plain RuleResults are accepted and treated as non-gating.

        Returns:
            DimensionScore whose details['calculation'] lists, per rule,
            weight, max_value, score, contribution, passed,
            gate_threshold and gate_applied.
        """
        pairs = [item if isinstance(item, tuple) else (item, None) for item in gated]
        results = [result for result, _ in pairs]

        if not results:
            return DimensionScore(
                dimension=dimension,
                final_score=0,
                explanation=NO_RULES_EXPLANATION,
                details={"calculation": [], "gates_applied": []},
            )

        weighted, total_contribution, total_weight = _weighted(results)
        base = weighted if weighted is not None else 0

        calculation: list[dict[str, Any]] = []
        gates_applied: list[str] = []
        final = base
        for result, threshold in pairs:
            applied = (
                threshold is not None
                and not result.skipped
                and result.score < threshold
            )
            if applied:
                gates_applied.append(result.rule_id)
                final = min(final, clamp_score(result.score))
            calculation.append({
                "rule_id": result.rule_id,
                "weight": result.weight,
                "max_value": result.max_score,
                "score": result.score,
                "contribution": result.contribution,
                "passed": result.passed,
                "gate_threshold": threshold,
                "gate_applied": applied,
            })

        if gates_applied:
            logger.debug(
                "%s capped at %d by gate(s) %s (weighted %d)",
                dimension, final, ", ".join(gates_applied), base,
            )
            explanation = (
                f"{dimension.capitalize()} is {band(final)} ({final}/100), capped by "
                f"failing gate rule(s): {', '.join(gates_applied)} "
                f"(weighted average was {base})"
            )
        elif weighted is None:
            explanation = NO_WEIGHT_EXPLANATION
        else:
            explanation = explain(dimension, final, results)

        return DimensionScore(
            dimension=dimension,
            final_score=final,
            sub_scores=results,
            issues=collect_issues(results),
            explanation=explanation,
            details={
                "weighted_score": base,
                "total_weight": total_weight,
                "total_contribution": total_contribution,
                "gates_applied": gates_applied,
                "calculation": calculation,
                "skipped": [r.rule_id for r in results if r.skipped],
            },
        )


AGGREGATORS = {
    WeightedAggregator.name: WeightedAggregator,
    ConditionalAggregator.name: ConditionalAggregator,
}


def compute_composite(
    dimension_scores: Union[Mapping[str, DimensionScore], Iterable[DimensionScore]],
    dimension_weights: Optional[Mapping[str, float]] = None,
) -> CompositeScore:
    """Weighted mean of dimension scores.

    Dimensions without any weighted rule result are left out of the mean.
    Dimensions missing from dimension_weights count with weight 1.0.

    Args:
        dimension_scores: DimensionScores by name, or an iterable of them.
        dimension_weights: Dimension name → weight.

    Returns:
        CompositeScore (global_score 0 when nothing was scored).
    """
    if isinstance(dimension_scores, Mapping):
        scores = dict(dimension_scores)
    else:
        scores = {s.dimension: s for s in dimension_scores}
    weights = dict(dimension_weights or {})

    used: dict[str, float] = {}
    weighted_sum = 0.0
    for name, score in scores.items():
        if sum(r.weight for r in score.sub_scores) <= 0:
            continue
        weight = weights.get(name, 1.0)
        if weight <= 0:
            continue
        used[name] = weight
        weighted_sum += score.final_score * weight

    total = sum(used.values())
    global_score = clamp_score(weighted_sum / total) if total > 0 else 0
    return CompositeScore(global_score=global_score, dimensions=scores, weights=used)
