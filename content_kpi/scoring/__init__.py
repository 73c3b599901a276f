"""Content KPI Engine — Scoring Package.

Aggregation of rule results into dimension and composite scores.
"""

from content_kpi.scoring.aggregator import (
    AGGREGATORS,
    CompositeScore,
    ConditionalAggregator,
    DimensionScore,
    WeightedAggregator,
    compute_composite,
)

__all__ = [
    "AGGREGATORS",
    "CompositeScore",
    "ConditionalAggregator",
    "DimensionScore",
    "WeightedAggregator",
    "compute_composite",
]
