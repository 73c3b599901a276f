"""Content KPI Engine — Google Gemini Reasoning Target.

Async client for the Google Gemini generative AI API. Sends a
ReasoningRequest and returns its parsed, schema-checked JSON answer.

Uses aiohttp for HTTP calls and AsyncRateLimiter for RPM throttling.
Every failure raises InvocationError; the AIClient decides what to do
next.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import aiohttp

from content_kpi.analyzer.request import ReasoningRequest
from content_kpi.analyzer.response_parser import parse_json_output, validate_schema
from content_kpi.config import GeminiConfig
from content_kpi.errors import InvocationError
from content_kpi.utils.logger import get_logger
from content_kpi.utils.rate_limiter import AsyncRateLimiter

logger = get_logger(__name__)

_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


class GeminiClient:
    """Async reasoning target backed by Google Gemini.

    Attributes:
        config: GeminiConfig with api_key, model, temperature, etc.
    """

    def __init__(self, config: GeminiConfig) -> None:
        """Initialize the Gemini client.

        Args:
            config: GeminiConfig from the app configuration.
        """
        self.config = config
        self._rate_limiter = AsyncRateLimiter(
            max_calls=config.rpm_limit,
            period_seconds=60.0,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        """Provider name identifier ('gemini')."""
        return "gemini"

    @property
    def model(self) -> str:
        """Configured model name."""
        return self.config.model

    async def __aenter__(self) -> "GeminiClient":
        self._session = aiohttp.ClientSession()
        logger.debug("Gemini client session created")
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug("Gemini client session closed")

    async def invoke(self, request: ReasoningRequest) -> dict[str, Any]:
        """Send a request to Gemini and return the parsed JSON answer.

        Args:
            request: Prompt, output schema and options.

        Returns:
            Parsed output with _provider, _model, _input_tokens and
            _output_tokens metadata.

        Raises:
            InvocationError: On missing session, transport error, non-200
                status, empty output, bad JSON or missing schema keys.
        """
        if self._session is None:
            raise InvocationError("Gemini session not created — use async with", target=self.name)

        await self._rate_limiter.acquire()

        url = f"{_API_BASE}/{self.config.model}:generateContent"
        body = {
            "systemInstruction": {"parts": [{"text": request.system}]},
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "temperature": request.options.get("temperature", self.config.temperature),
                "maxOutputTokens": request.options.get("max_tokens", self.config.max_tokens),
                "responseMimeType": "application/json",
                "thinkingConfig": {"thinkingBudget": 0},
            },
            "safetySettings": _SAFETY_SETTINGS,
        }

        try:
            async with self._session.post(
                url, params={"key": self.config.api_key}, json=body
            ) as resp:
                if resp.status != 200:
                    error_body = await resp.text()
                    raise InvocationError(
                        f"Gemini HTTP {resp.status}: {error_body[:300]}", target=self.name
                    )
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise InvocationError(f"Gemini network error: {e}", target=self.name) from e

        # ── Parse response ───────────────────────────────
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            logger.debug("Gemini raw response: %s", json.dumps(data, ensure_ascii=False)[:500])
            raise InvocationError(
                f"Gemini response structure error: {e!r}", target=self.name
            ) from e

        # Skip thought parts from thinking models; the answer is the last text part
        text_parts = [p["text"] for p in parts if "text" in p and not p.get("thought", False)]
        if not text_parts:
            raise InvocationError("Gemini returned no text parts", target=self.name)

        result = parse_json_output(text_parts[-1], self.name)
        validate_schema(result, request.schema, self.name)

        # ── Add metadata ─────────────────────────────────
        usage = data.get("usageMetadata", {})
        result["_input_tokens"] = usage.get("promptTokenCount", 0)
        result["_output_tokens"] = usage.get("candidatesTokenCount", 0)
        result["_provider"] = self.name
        result["_model"] = self.config.model

        logger.info(
            "Gemini response OK for %s: %d in / %d out tokens",
            request.label, result["_input_tokens"], result["_output_tokens"],
        )
        return result
