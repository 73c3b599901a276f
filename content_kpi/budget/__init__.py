"""Content KPI Engine — Budget Package.

Cost governance for paid reasoning calls: cost estimation, per-unit and
session caps, and the cost circuit breaker.
"""

from content_kpi.budget.manager import (
    DEFAULT_MODEL,
    DEFAULT_RATE,
    BudgetManager,
    BudgetState,
    estimate_cost,
)

__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_RATE",
    "BudgetManager",
    "BudgetState",
    "estimate_cost",
]
