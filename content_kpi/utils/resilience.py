"""Content KPI Engine — Resilience Utilities.

Primary/fallback invocation for external reasoning calls.

The contract is deliberately narrow:
  1. Try the primary target once.
  2. On any failure (timeout, transport error, malformed output) log it
     and try the fallback target once.
  3. If the fallback fails too, the caller gets the fallback's error.

There is no further retry and no silent default, so the worst case is
roughly twice the latency of one call and failures stay visible.

Usage:
    outcome = await with_fallback(gemini, groq, lambda t: t.invoke(req), timeout=30)
    if outcome.ok:
        use(outcome.value)

    invoker = ResilientInvoker(timeout_seconds=30)
    result = await invoker.invoke(request, primary=gemini, fallback=groq)
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from content_kpi.errors import InvocationError
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)


class OutcomeSource(str, enum.Enum):
    """Which leg of the primary/fallback pair produced the outcome."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    FAILURE = "failure"


@dataclass
class Attempt:
    """One call against one target."""

    target: str
    ok: bool
    elapsed: float
    error: Optional[BaseException] = None


@dataclass
class FallbackOutcome:
    """Tagged result of a primary/fallback invocation.

    Attributes:
        source: PRIMARY or FALLBACK on success, FAILURE otherwise.
        value: The successful call's return value (None on FAILURE).
        error: The fallback's error on FAILURE.
        attempts: Every call made, in order (one or two entries).
    """

    source: OutcomeSource
    value: Any = None
    error: Optional[BaseException] = None
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether either target succeeded."""
        return self.source is not OutcomeSource.FAILURE


def _target_name(target: Any) -> str:
    """Best-effort label for a target in logs and attempt records."""
    return str(getattr(target, "name", target))


async def _attempt(
    target: Any,
    call: Callable[[Any], Awaitable[Any]],
    timeout: Optional[float],
) -> Any:
    """Run one call, converting a timeout into InvocationError.

    The timeout only stops local waiting; work already sent to the
    remote service is not aborted.
    """
    try:
        if timeout is None:
            return await call(target)
        return await asyncio.wait_for(call(target), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise InvocationError(
            f"{_target_name(target)} timed out after {timeout:.1f}s",
            target=_target_name(target),
        ) from e


async def with_fallback(
    primary: Any,
    fallback: Any,
    call: Callable[[Any], Awaitable[Any]],
    timeout: Optional[float] = None,
) -> FallbackOutcome:
    """Run call(primary); on failure run call(fallback) exactly once.

    Args:
        primary: Target tried first.
        fallback: Target tried if the primary fails.
        call: Async function invoked with a target.
        timeout: Per-call timeout in seconds (None = no timeout).

    Returns:
        A FallbackOutcome tagged PRIMARY, FALLBACK or FAILURE.
    """
    attempts: list[Attempt] = []

    # ── Primary ──────────────────────────────────────────
    started = time.monotonic()
    try:
        value = await _attempt(primary, call, timeout)
        attempts.append(Attempt(_target_name(primary), True, time.monotonic() - started))
        return FallbackOutcome(OutcomeSource.PRIMARY, value=value, attempts=attempts)
    except Exception as e:
        attempts.append(Attempt(_target_name(primary), False, time.monotonic() - started, e))
        logger.warning(
            "Primary (%s) failed: %s — trying fallback (%s)",
            _target_name(primary), str(e)[:200], _target_name(fallback),
        )

    # ── Fallback ─────────────────────────────────────────
    started = time.monotonic()
    try:
        value = await _attempt(fallback, call, timeout)
        attempts.append(Attempt(_target_name(fallback), True, time.monotonic() - started))
        logger.info("Call completed via fallback %s", _target_name(fallback))
        return FallbackOutcome(OutcomeSource.FALLBACK, value=value, attempts=attempts)
    except Exception as e:
        attempts.append(Attempt(_target_name(fallback), False, time.monotonic() - started, e))
        logger.error(
            "Fallback (%s) also failed: %s", _target_name(fallback), str(e)[:200],
        )
        return FallbackOutcome(OutcomeSource.FAILURE, error=e, attempts=attempts)


class ResilientInvoker:
    """Invokes reasoning targets with one primary attempt and one fallback.

    Targets expose `name` and `async invoke(request) -> dict`.

    Attributes:
        timeout_seconds: Per-call timeout applied to each attempt.
    """

    def __init__(self, timeout_seconds: Optional[float] = 30.0) -> None:
        """Initialize the invoker.

        Args:
            timeout_seconds: Per-call timeout (None disables it).
        """
        self.timeout_seconds = timeout_seconds

    async def invoke_outcome(
        self, request: Any, primary: Any, fallback: Any
    ) -> FallbackOutcome:
        """Invoke and return the tagged outcome without raising."""
        return await with_fallback(
            primary,
            fallback,
            lambda target: target.invoke(request),
            timeout=self.timeout_seconds,
        )

    async def invoke(self, request: Any, primary: Any, fallback: Any) -> Any:
        """Invoke and return the structured output.

        Args:
            request: The request handed to target.invoke().
            primary: Target tried first.
            fallback: Target tried if the primary fails.

        Returns:
            The first successful target's output.

        Raises:
            InvocationError: The fallback's error when both targets fail.
        """
        outcome = await self.invoke_outcome(request, primary, fallback)
        if outcome.ok:
            return outcome.value
        raise as_invocation_error(outcome.error, _target_name(fallback))


def as_invocation_error(error: Optional[BaseException], target: str) -> InvocationError:
    """Wrap a non-InvocationError failure so callers catch one type."""
    if isinstance(error, InvocationError):
        return error
    wrapped = InvocationError(f"{target} failed: {error}", target=target)
    wrapped.__cause__ = error
    return wrapped
