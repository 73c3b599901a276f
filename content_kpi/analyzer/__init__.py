"""Content KPI Engine — Analyzer Package.

The external reasoning service used by LLM-backed rules.
Components:
  - GeminiClient: Google Gemini reasoning target
  - GroqClient: Groq reasoning target (OpenAI-compatible)
  - AIClient: primary/fallback invocation with spend metering
  - ReasoningRequest: prompt + output schema + options
"""

from content_kpi.analyzer.ai_client import AIClient
from content_kpi.analyzer.gemini_client import GeminiClient
from content_kpi.analyzer.groq_client import GroqClient
from content_kpi.analyzer.request import ReasoningRequest

__all__ = [
    "AIClient",
    "GeminiClient",
    "GroqClient",
    "ReasoningRequest",
]
