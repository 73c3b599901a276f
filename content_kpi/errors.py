"""Content KPI Engine — Exception Hierarchy.

Every engine-specific error derives from ContentKPIError. Each subclass
maps to the layer that recovers from it:

  ConfigurationError     fatal at startup
  InvocationError        invoker layer (one fallback attempt)
  BudgetExceeded         rule layer (degraded result)
  CircuitBreakerTripped  rule layer (degraded result)
  UnitAnalysisError      pipeline layer (unit marked unanalyzed)
  BatchFatalError        fatal for the run (pipeline.failed emitted)
"""

from __future__ import annotations

from typing import Any, Optional


class ContentKPIError(Exception):
    """Base exception for all Content KPI engine errors."""


class ConfigurationError(ContentKPIError):
    """Invalid or missing rule, rate-card or settings configuration."""


class InvocationError(ContentKPIError):
    """A reasoning-service call failed (timeout, transport, bad output)."""

    def __init__(self, message: str, *, target: str = "") -> None:
        super().__init__(message)
        self.target = target


class BudgetExceeded(ContentKPIError):
    """A paid call would exceed the per-unit or session budget."""

    def __init__(self, reason: str, *, estimated_cost: float = 0.0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.estimated_cost = estimated_cost


class CircuitBreakerTripped(ContentKPIError):
    """Average spend per unit is too high; paid calls are suspended."""

    def __init__(self, average_cost: float, limit: float) -> None:
        super().__init__(
            f"Cost circuit breaker tripped: average ${average_cost:.4f}/unit "
            f"exceeds ${limit:.4f}/unit"
        )
        self.average_cost = average_cost
        self.limit = limit


class UnitAnalysisError(ContentKPIError):
    """Analysis of a single unit (page or domain) failed."""

    def __init__(
        self, unit_id: str, message: str, *, stage: Optional[str] = None
    ) -> None:
        super().__init__(f"{unit_id}: {message}")
        self.unit_id = unit_id
        self.stage = stage


class BatchFatalError(ContentKPIError):
    """A failure outside the per-unit loop; the whole run is aborted.

    Attributes:
        run: The PipelineRun that was aborted, when one exists.
    """

    def __init__(self, message: str, *, run: Optional[Any] = None) -> None:
        super().__init__(message)
        self.run = run
