"""Content KPI Engine — Budget Manager & Cost Circuit Breaker.

Tracks spend on paid reasoning calls for one pipeline session and gates
further spend.

  - estimate_cost():      price a call from token counts and a rate card
  - check_can_proceed():  refuse a call over the per-unit or session cap
  - record_actual():      add incurred cost (success or failure)
  - should_trip_breaker(): suspend paid calls once the average cost per
                          unit runs far above target

Callers check the breaker before the budget on every call. State is only
cleared by an explicit reset() so a run's cost stays observable.

Two tasks may both pass check_can_proceed() before either records its
cost. That overshoot is accepted rather than serialising calls behind a
lock.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

from content_kpi.errors import BudgetExceeded, CircuitBreakerTripped
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Defaults ─────────────────────────────────────────────
# Prices are per 1K tokens. Unknown models are priced at DEFAULT_RATE.
DEFAULT_MODEL = "gpt-3.5-turbo-0125"
DEFAULT_RATE: dict[str, float] = {"input": 0.0005, "output": 0.0015}

DEFAULT_RATE_CARD: dict[str, dict[str, float]] = {
    DEFAULT_MODEL: DEFAULT_RATE,
    "gpt-4-turbo-preview": {"input": 0.01, "output": 0.03},
    "gpt-4": {"input": 0.03, "output": 0.06},
}

_LOW_BUDGET_RATIO = 0.1


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    model: str = DEFAULT_MODEL,
    rate_card: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> float:
    """Price a call from its token counts.

    Args:
        input_tokens: Prompt tokens.
        output_tokens: Completion tokens.
        model: Model name looked up in the rate card.
        rate_card: model -> {"input": $/1K, "output": $/1K}. Defaults to
            DEFAULT_RATE_CARD.

    Returns:
        Cost in dollars. Models missing from the card use DEFAULT_RATE.
    """
    card = DEFAULT_RATE_CARD if rate_card is None else rate_card
    rates = card.get(model)
    if rates is None:
        logger.debug("No rate for model '%s', using default rate", model)
        rates = DEFAULT_RATE
    return (input_tokens / 1000) * rates["input"] + (output_tokens / 1000) * rates["output"]


@dataclass
class BudgetState:
    """Spend counters for one pipeline session.

    Attributes:
        session_spend: Dollars recorded so far (never decreases until reset).
        units_processed: Number of record_actual() calls.
        per_unit_cap: Maximum estimated cost of a single call.
        session_cap: Maximum total spend for the session.
        breaker_tripped: Latched once the breaker condition is met.
    """

    per_unit_cap: float
    session_cap: float
    session_spend: float = 0.0
    units_processed: int = 0
    breaker_tripped: bool = False


class BudgetManager:
    """Budget gate and cost circuit breaker for paid reasoning calls.

    Attributes:
        state: The live BudgetState.
        target_cost: Expected average cost per unit.
        breaker_multiplier: Breaker trips above target_cost × multiplier.
        min_sample_size: Units required before the breaker may trip.
        enabled: When False every check passes.
    """

    def __init__(
        self,
        per_unit_cap: float = 0.01,
        session_cap: float = 5.0,
        target_cost: float = 0.003,
        breaker_multiplier: float = 5.0,
        min_sample_size: int = 3,
        rate_card: Optional[Mapping[str, Mapping[str, float]]] = None,
        enabled: bool = True,
    ) -> None:
        """Initialize the budget manager.

        Args:
            per_unit_cap: Maximum estimated cost for one call.
            session_cap: Maximum total spend for the session.
            target_cost: Expected average cost per unit.
            breaker_multiplier: Multiple of target_cost that trips the breaker.
            min_sample_size: Units that must be recorded before tripping.
            rate_card: Per-model token prices (per 1K tokens).
            enabled: Disable to let every call through.
        """
        self.state = BudgetState(per_unit_cap=per_unit_cap, session_cap=session_cap)
        self.target_cost = target_cost
        self.breaker_multiplier = breaker_multiplier
        self.min_sample_size = min_sample_size
        self.rate_card: dict[str, Mapping[str, float]] = dict(
            DEFAULT_RATE_CARD if rate_card is None else rate_card
        )
        self.enabled = enabled

        logger.info(
            "Budget manager initialized: per-unit cap=$%.4f, session cap=$%.2f%s",
            per_unit_cap, session_cap, "" if enabled else " (disabled)",
        )

    # ── Derived values ───────────────────────────────────

    @property
    def average_cost_per_unit(self) -> float:
        """Mean recorded cost per unit (0 before the first record)."""
        if self.state.units_processed == 0:
            return 0.0
        return self.state.session_spend / self.state.units_processed

    @property
    def remaining_budget(self) -> float:
        """Dollars left before the session cap."""
        return self.state.session_cap - self.state.session_spend

    @property
    def breaker_limit(self) -> float:
        """Average cost per unit above which the breaker trips."""
        return self.target_cost * self.breaker_multiplier

    # ── Pricing ──────────────────────────────────────────

    def estimate_cost(
        self, input_tokens: int, output_tokens: int, model: str = DEFAULT_MODEL
    ) -> float:
        """Price a call with this manager's rate card."""
        return estimate_cost(input_tokens, output_tokens, model, self.rate_card)

    def calculate_actual_cost(
        self, input_tokens: int, output_tokens: int, model: str
    ) -> float:
        """Price a finished call from the usage the provider reported."""
        return estimate_cost(input_tokens, output_tokens, model, self.rate_card)

    # ── Gates ────────────────────────────────────────────

    def _refusal_reason(self, estimated_cost: float) -> Optional[str]:
        """Why a call of this estimated cost is refused, or None."""
        if not self.enabled:
            return None
        if estimated_cost > self.state.per_unit_cap:
            return (
                f"Estimated cost ${estimated_cost:.4f} exceeds per-unit limit "
                f"${self.state.per_unit_cap:.4f}"
            )
        projected = self.state.session_spend + estimated_cost
        if projected > self.state.session_cap:
            return (
                f"Projected total cost ${projected:.4f} exceeds session limit "
                f"${self.state.session_cap:.4f}"
            )
        return None

    def can_proceed(self, estimated_cost: float) -> bool:
        """Whether a call of this estimated cost fits the budget."""
        return self._refusal_reason(estimated_cost) is None

    def check_can_proceed(self, estimated_cost: float) -> None:
        """Permit a call or raise BudgetExceeded.

        Args:
            estimated_cost: Estimated dollars for the upcoming call.

        Raises:
            BudgetExceeded: If the call alone exceeds the per-unit cap or
                would push session spend over the session cap.
        """
        reason = self._refusal_reason(estimated_cost)
        if reason is not None:
            logger.info("Budget refused call: %s", reason)
            raise BudgetExceeded(reason, estimated_cost=estimated_cost)

    def should_trip_breaker(self) -> bool:
        """Whether paid calls should be suspended.

        True once more than min_sample_size units were recorded and their
        average cost exceeds target_cost × breaker_multiplier. Stays true
        until reset().
        """
        if not self.enabled:
            return False
        if self.state.breaker_tripped:
            return True
        if (
            self.state.units_processed > self.min_sample_size
            and self.average_cost_per_unit > self.breaker_limit
        ):
            self.state.breaker_tripped = True
            logger.warning(
                "Cost circuit breaker TRIPPED: avg $%.4f/unit > $%.4f/unit "
                "after %d units",
                self.average_cost_per_unit, self.breaker_limit,
                self.state.units_processed,
            )
        return self.state.breaker_tripped

    def check_breaker(self) -> None:
        """Raise CircuitBreakerTripped if paid calls are suspended."""
        if self.should_trip_breaker():
            raise CircuitBreakerTripped(self.average_cost_per_unit, self.breaker_limit)

    # ── Recording ────────────────────────────────────────

    def record_actual(self, cost: float) -> None:
        """Record cost already incurred, whether the call succeeded or not.

        Args:
            cost: Dollars spent (negative values are rejected).

        Raises:
            ValueError: If cost is negative.
        """
        if cost < 0:
            raise ValueError(f"Recorded cost must be >= 0, got {cost}")
        self.state.session_spend += cost
        self.state.units_processed += 1

        logger.debug(
            "Recorded cost: $%.4f, total: $%.4f, units: %d",
            cost, self.state.session_spend, self.state.units_processed,
        )

        remaining = self.remaining_budget
        if self.enabled and remaining < self.state.session_cap * _LOW_BUDGET_RATIO:
            logger.warning(
                "Budget warning: only $%.4f remaining (%.1f%%)",
                remaining, remaining / self.state.session_cap * 100,
            )

    def reset(self) -> None:
        """Zero spend, count and breaker for a new session."""
        logger.info(
            "Resetting budget. Previous session: $%.4f for %d units",
            self.state.session_spend, self.state.units_processed,
        )
        self.state.session_spend = 0.0
        self.state.units_processed = 0
        self.state.breaker_tripped = False

    # ── Reporting ────────────────────────────────────────

    def estimate_remaining_units(self) -> float:
        """How many more units the remaining budget should cover."""
        if not self.enabled:
            return float("inf")
        per_unit = self.average_cost_per_unit or self.state.per_unit_cap
        if per_unit <= 0:
            return float("inf")
        return max(0, int(self.remaining_budget // per_unit))

    def is_within_target_efficiency(self) -> bool:
        """Average cost at or below target (small samples always pass)."""
        return (
            self.average_cost_per_unit <= self.target_cost
            or self.state.units_processed < 5
        )

    def performance_metrics(self) -> dict[str, Any]:
        """Spend efficiency summary for logs and run reports."""
        avg = self.average_cost_per_unit
        if avg <= self.target_cost:
            efficiency = "excellent"
        elif avg <= self.target_cost * 5 / 3:
            efficiency = "good"
        elif avg <= self.target_cost * 10 / 3:
            efficiency = "acceptable"
        else:
            efficiency = "poor"

        cap = self.state.session_cap
        return {
            "avg_cost_per_unit": avg,
            "total_spend": self.state.session_spend,
            "units_processed": self.state.units_processed,
            "budget_utilization": self.state.session_spend / cap if cap else 0.0,
            "efficiency": efficiency,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize state for run reports."""
        data = asdict(self.state)
        data["remaining_budget"] = round(self.remaining_budget, 6)
        data["avg_cost_per_unit"] = round(self.average_cost_per_unit, 6)
        data["enabled"] = self.enabled
        return data
