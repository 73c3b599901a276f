"""Content KPI Engine — Reasoning Request.

The structured request every reasoning target accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Rough token estimate: one token per four characters.
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class ReasoningRequest:
    """A prompt plus the shape its answer must have.

    Attributes:
        prompt: Full user prompt.
        schema: Required output keys mapped to their expected type name
            ('int', 'float', 'str', 'list', 'bool', 'dict').
        options: Per-request overrides ('temperature', 'max_tokens').
        system: Optional system instruction.
        label: Short name for logs (usually the rule id).
    """

    prompt: str
    schema: dict[str, str] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    system: str = (
        "You are an expert SEO and content analyst. "
        "Always respond with valid JSON only, no markdown."
    )
    label: str = "analysis"

    @property
    def estimated_input_tokens(self) -> int:
        """Token estimate for the prompt and system instruction."""
        return -(-(len(self.prompt) + len(self.system)) // CHARS_PER_TOKEN)

    def estimated_output_tokens(self, default: int = 500) -> int:
        """Token estimate for the answer (max_tokens when set)."""
        return int(self.options.get("max_tokens", default))
