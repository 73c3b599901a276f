"""Content KPI Engine — Unified AI Client.

Wraps GeminiClient and GroqClient behind a single interface with one
primary attempt, one fallback attempt and spend metering.

Every analyze() call records what it cost through the BudgetManager,
successful or not:
  - a successful attempt is priced from the token usage it reported
  - a failed attempt is priced at the request's estimate
"""

from __future__ import annotations

from typing import Any, Optional

from content_kpi.analyzer.gemini_client import GeminiClient
from content_kpi.analyzer.groq_client import GroqClient
from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.budget.manager import BudgetManager
from content_kpi.config import AIConfig
from content_kpi.utils.logger import get_logger
from content_kpi.utils.resilience import FallbackOutcome, ResilientInvoker, as_invocation_error

logger = get_logger(__name__)


class AIClient:
    """Reasoning service facade used by LLM-backed rules.

    Attributes:
        primary: Target tried first.
        fallback: Target tried when the primary fails.
        invoker: ResilientInvoker running the primary/fallback pair.
        budget: BudgetManager that receives the cost of every call.
    """

    def __init__(
        self,
        config: Optional[AIConfig] = None,
        budget: Optional[BudgetManager] = None,
        *,
        primary: Any = None,
        fallback: Any = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Initialize the client.

        Either pass an AIConfig (both targets are built from it) or pass
        primary and fallback targets directly.

        Args:
            config: AIConfig with provider settings.
            budget: BudgetManager to record spend on (a fresh one if None).
            primary: Explicit primary target (overrides config).
            fallback: Explicit fallback target (overrides config).
            timeout_seconds: Per-attempt timeout (defaults to config, else 30s).

        Raises:
            ValueError: If neither config nor both targets are given.
        """
        if primary is None or fallback is None:
            if config is None:
                raise ValueError("AIClient needs an AIConfig or explicit primary and fallback targets")
            targets = {"gemini": GeminiClient(config.gemini), "groq": GroqClient(config.groq)}
            primary = primary or targets[config.primary_provider]
            fallback = fallback or targets[config.fallback_provider]

        if timeout_seconds is None:
            timeout_seconds = config.timeout_seconds if config is not None else 30.0

        self.primary = primary
        self.fallback = fallback
        self.invoker = ResilientInvoker(timeout_seconds=timeout_seconds)
        self.budget = budget or BudgetManager()

        logger.info(
            "AIClient initialized: primary=%s, fallback=%s, timeout=%.0fs",
            self.primary.name, self.fallback.name, timeout_seconds,
        )

    async def __aenter__(self) -> "AIClient":
        for target in (self.primary, self.fallback):
            enter = getattr(target, "__aenter__", None)
            if enter is not None:
                await enter()
        return self

    async def __aexit__(self, *args: object) -> None:
        for target in (self.primary, self.fallback):
            exit_ = getattr(target, "__aexit__", None)
            if exit_ is not None:
                await exit_(*args)

    def estimate_cost(self, request: ReasoningRequest) -> float:
        """Estimated dollars for one call of this request on the primary."""
        return self.budget.estimate_cost(
            request.estimated_input_tokens,
            request.estimated_output_tokens(),
            getattr(self.primary, "model", ""),
        )

    def _actual_cost(self, request: ReasoningRequest, outcome: FallbackOutcome) -> float:
        """Sum the cost of every attempt in an outcome.

        Attempts are in call order: the first went to the primary, the
        second (if any) to the fallback. Target names may coincide.
        """
        total = 0.0
        for index, attempt in enumerate(outcome.attempts):
            if attempt.ok and isinstance(outcome.value, dict):
                total += self.budget.calculate_actual_cost(
                    int(outcome.value.get("_input_tokens", 0) or 0),
                    int(outcome.value.get("_output_tokens", 0) or 0),
                    str(outcome.value.get("_model", "")),
                )
            else:
                target = self.primary if index == 0 else self.fallback
                total += self.budget.estimate_cost(
                    request.estimated_input_tokens,
                    request.estimated_output_tokens(),
                    getattr(target, "model", ""),
                )
        return total

    async def analyze_outcome(self, request: ReasoningRequest) -> FallbackOutcome:
        """Invoke primary then fallback, record cost, return the tagged outcome."""
        outcome = await self.invoker.invoke_outcome(request, self.primary, self.fallback)
        cost = self._actual_cost(request, outcome)
        self.budget.record_actual(cost)
        logger.debug(
            "%s via %s cost $%.5f (%d attempt(s))",
            request.label, outcome.source.value, cost, len(outcome.attempts),
        )
        return outcome

    async def analyze(self, request: ReasoningRequest) -> dict[str, Any]:
        """Send a request with fallback and return the structured answer.

        Args:
            request: Prompt, schema and options.

        Returns:
            The answer dict (with provider metadata).

        Raises:
            InvocationError: The fallback's error when both targets fail.
        """
        outcome = await self.analyze_outcome(request)
        if outcome.ok:
            logger.info("Analysis %s complete via %s", request.label, outcome.value.get("_provider"))
            return outcome.value
        raise as_invocation_error(outcome.error, self.fallback.name)
