"""Content KPI Engine — Groq Reasoning Target.

Async client for the Groq API (OpenAI-compatible). Same interface as
GeminiClient so either can be primary or fallback.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import aiohttp

from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.analyzer.response_parser import parse_json_output, validate_schema
from content_kpi.config import GroqConfig
from content_kpi.errors import InvocationError
from content_kpi.utils.logger import get_logger
from content_kpi.utils.rate_limiter import AsyncRateLimiter

logger = get_logger(__name__)

_API_URL = "https://api.groq.com/openai/v1/chat/completions"


class GroqClient:
    """Async reasoning target backed by Groq chat completions.

    Attributes:
        config: GroqConfig with api_key, model, temperature, etc.
    """

    def __init__(self, config: GroqConfig) -> None:
        self.config = config
        self._rate_limiter = AsyncRateLimiter(
            max_calls=config.rpm_limit,
            period_seconds=60.0,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        """Provider name identifier ('groq')."""
        return "groq"

    @property
    def model(self) -> str:
        """Configured model name."""
        return self.config.model

    async def __aenter__(self) -> "GroqClient":
        self._session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            }
        )
        logger.debug("Groq client session created")
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug("Groq client session closed")

    async def invoke(self, request: ReasoningRequest) -> dict[str, Any]:
        """Send a request to Groq and return the parsed JSON answer.

        Raises:
            InvocationError: On missing session, transport error, non-200
                status, empty output, bad JSON or missing schema keys.
        """
        if self._session is None:
            raise InvocationError("Groq session not created — use async with", target=self.name)

        await self._rate_limiter.acquire()

        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": request.options.get("temperature", self.config.temperature),
            "max_tokens": request.options.get("max_tokens", self.config.max_tokens),
            "response_format": {"type": "json_object"},
        }

        try:
            async with self._session.post(_API_URL, json=body) as resp:
                if resp.status != 200:
                    error_body = await resp.text()
                    raise InvocationError(
                        f"Groq HTTP {resp.status}: {error_body[:300]}", target=self.name
                    )
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise InvocationError(f"Groq network error: {e}", target=self.name) from e

        # ── Parse response ───────────────────────────────
        try:
            raw_text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.debug("Groq raw response: %s", json.dumps(data, ensure_ascii=False)[:500])
            raise InvocationError(
                f"Groq response structure error: {e!r}", target=self.name
            ) from e
        if not raw_text:
            raise InvocationError("Groq returned empty content", target=self.name)

        result = parse_json_output(raw_text, self.name)
        validate_schema(result, request.schema, self.name)

        # ── Add metadata ─────────────────────────────────
        usage = data.get("usage", {})
        result["_input_tokens"] = usage.get("prompt_tokens", 0)
        result["_output_tokens"] = usage.get("completion_tokens", 0)
        result["_provider"] = self.name
        result["_model"] = self.config.model

        logger.info(
            "Groq response OK for %s: %d in / %d out tokens",
            request.label, result["_input_tokens"], result["_output_tokens"],
        )
        return result
