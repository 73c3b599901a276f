"""Content KPI Engine — Budget Manager Tests.

Verifies spend tracking and the cost circuit breaker:
  1. Per-unit and session caps
  2. Monotonic recording and reset
  3. Breaker sample size, threshold and latch
  4. Rate-card pricing and reporting

Run: python scripts/test_budget.py
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from content_kpi.budget.manager import DEFAULT_RATE, BudgetManager, estimate_cost
from content_kpi.errors import BudgetExceeded, CircuitBreakerTripped
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


def check(label: str, condition: bool) -> None:
    """Log a test condition and fail the test when it does not hold."""
    if condition:
        logger.info("  ✅ %s", label)
    else:
        logger.error("  ❌ FAILED: %s", label)
    assert condition, label


# ═══════════════════════════════════════════════════════════
# Caps
# ═══════════════════════════════════════════════════════════


def test_session_cap() -> None:
    budget = BudgetManager(per_unit_cap=1.0, session_cap=0.5)
    check("Fresh budget allows $0.25", budget.can_proceed(0.25))

    budget.record_actual(0.25)
    check("$0.25 more fits exactly", budget.can_proceed(0.25))
    check("$0.375 more would exceed", not budget.can_proceed(0.375))

    try:
        budget.check_can_proceed(0.375)
    except BudgetExceeded as e:
        check("BudgetExceeded raised", "session limit" in e.reason)
        check("Estimate carried", e.estimated_cost == 0.375)
    else:
        check("BudgetExceeded raised", False)


def test_per_unit_cap() -> None:
    budget = BudgetManager(per_unit_cap=0.01, session_cap=5.0)
    check("Under per-unit cap", budget.can_proceed(0.009))
    check("Over per-unit cap", not budget.can_proceed(0.02))
    try:
        budget.check_can_proceed(0.02)
    except BudgetExceeded as e:
        check("Reason names per-unit limit", "per-unit" in e.reason)
    else:
        check("Per-unit refusal raised", False)


def test_record_monotonic_and_reset() -> None:
    budget = BudgetManager(session_cap=1.0)
    spends = []
    for cost in (0.01, 0.0, 0.02, 0.005):
        budget.record_actual(cost)
        spends.append(budget.state.session_spend)

    check("Spend never decreases", spends == sorted(spends))
    check("Units counted", budget.state.units_processed == 4)

    try:
        budget.record_actual(-0.01)
    except ValueError:
        check("Negative cost rejected", budget.state.session_spend == spends[-1])
    else:
        check("Negative cost rejected", False)

    budget.reset()
    check("Reset zeroes spend", budget.state.session_spend == 0.0)
    check("Reset zeroes count", budget.state.units_processed == 0)
    check("Remaining budget restored", budget.remaining_budget == 1.0)


def test_disabled_budget() -> None:
    budget = BudgetManager(per_unit_cap=0.0, session_cap=0.0, enabled=False)
    check("Disabled budget allows anything", budget.can_proceed(100.0))
    for _ in range(10):
        budget.record_actual(1.0)
    check("Disabled breaker never trips", not budget.should_trip_breaker())


# ═══════════════════════════════════════════════════════════
# Circuit Breaker
# ═══════════════════════════════════════════════════════════


def test_breaker_waits_for_sample_size() -> None:
    budget = BudgetManager(
        per_unit_cap=10.0, session_cap=100.0,
        target_cost=0.001, breaker_multiplier=5.0, min_sample_size=3,
    )
    for i in range(3):
        budget.record_actual(1.0)
        check(f"No trip after {i + 1} expensive unit(s)", not budget.should_trip_breaker())

    budget.record_actual(1.0)
    check("Trips once count > min sample size", budget.should_trip_breaker())
    try:
        budget.check_breaker()
    except CircuitBreakerTripped as e:
        check("Exception carries average", e.average_cost == 1.0)
        check("Exception carries limit", abs(e.limit - 0.005) < 1e-12)
    else:
        check("CircuitBreakerTripped raised", False)


def test_breaker_under_threshold() -> None:
    budget = BudgetManager(target_cost=0.003, breaker_multiplier=5.0, min_sample_size=3)
    for _ in range(10):
        budget.record_actual(0.01)
    check("Average $0.01 ≤ $0.015 keeps breaker closed", not budget.should_trip_breaker())


def test_breaker_latches_until_reset() -> None:
    budget = BudgetManager(
        per_unit_cap=10.0, session_cap=100.0,
        target_cost=0.001, breaker_multiplier=2.0, min_sample_size=1,
    )
    budget.record_actual(0.5)
    budget.record_actual(0.5)
    check("Tripped", budget.should_trip_breaker())

    for _ in range(1000):
        budget.record_actual(0.0)
    check("Average back below limit", budget.average_cost_per_unit < budget.breaker_limit)
    check("Still tripped (latched)", budget.should_trip_breaker())

    budget.reset()
    check("Reset clears breaker", not budget.should_trip_breaker())


# ═══════════════════════════════════════════════════════════
# Pricing & Reporting
# ═══════════════════════════════════════════════════════════


def test_rate_card_pricing() -> None:
    card = {"tiny-model": {"input": 0.001, "output": 0.002}}
    check(
        "Known model priced from card",
        abs(estimate_cost(1000, 500, "tiny-model", card) - 0.002) < 1e-12,
    )
    expected = DEFAULT_RATE["input"] * 2 + DEFAULT_RATE["output"] * 1
    check(
        "Unknown model uses default rate",
        abs(estimate_cost(2000, 1000, "mystery", card) - expected) < 1e-12,
    )

    budget = BudgetManager(rate_card=card)
    check(
        "Manager uses its own card",
        abs(budget.calculate_actual_cost(1000, 1000, "tiny-model") - 0.003) < 1e-12,
    )


def test_performance_metrics() -> None:
    budget = BudgetManager(session_cap=1.0, target_cost=0.003)
    check("No spend is excellent", budget.performance_metrics()["efficiency"] == "excellent")

    budget.record_actual(0.004)
    metrics = budget.performance_metrics()
    check("0.004 ≤ 0.005 is good", metrics["efficiency"] == "good")
    check("Utilization", abs(metrics["budget_utilization"] - 0.004) < 1e-12)

    budget.record_actual(0.05)
    check("High average is poor", budget.performance_metrics()["efficiency"] == "poor")

    data = budget.to_dict()
    check("to_dict has spend and remaining", data["units_processed"] == 2 and data["remaining_budget"] > 0)


def test_estimate_remaining_units() -> None:
    budget = BudgetManager(per_unit_cap=0.25, session_cap=1.0)
    check("No history uses per-unit cap", budget.estimate_remaining_units() == 4)
    budget.record_actual(0.5)
    check("History uses the average", budget.estimate_remaining_units() == 1)


def run_all_tests() -> None:
    """Run all budget tests."""
    logger.info("╔══════════════════════════════════════════╗")
    logger.info("║  Content KPI Engine — Budget Tests       ║")
    logger.info("╚══════════════════════════════════════════╝")

    for test in (
        test_session_cap,
        test_per_unit_cap,
        test_record_monotonic_and_reset,
        test_disabled_budget,
        test_breaker_waits_for_sample_size,
        test_breaker_under_threshold,
        test_breaker_latches_until_reset,
        test_rate_card_pricing,
        test_performance_metrics,
        test_estimate_remaining_units,
    ):
        logger.info("═══ %s ═══", test.__name__)
        test()

    logger.info("🎉 All budget tests passed!")


if __name__ == "__main__":
    run_all_tests()
