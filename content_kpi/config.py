"""Content KPI Engine — Configuration Loader.

Loads and validates application configuration from YAML files.
Resolves environment variables referenced via ${VAR_NAME} syntax.
Uses Python dataclasses for type-safe configuration access.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from content_kpi.errors import ConfigurationError
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)}")

AGGREGATORS = ("weighted", "conditional")
PROVIDERS = ("gemini", "groq")


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GeminiConfig:
    """Configuration for the Google Gemini reasoning target."""

    api_key: str
    model: str
    max_tokens: int
    temperature: float
    rpm_limit: int


@dataclass(frozen=True)
class GroqConfig:
    """Configuration for the Groq reasoning target."""

    api_key: str
    model: str
    max_tokens: int
    temperature: float
    rpm_limit: int


@dataclass(frozen=True)
class AIConfig:
    """Configuration for the reasoning service."""

    primary_provider: str
    fallback_provider: str
    timeout_seconds: float
    gemini: GeminiConfig
    groq: GroqConfig


@dataclass(frozen=True)
class BudgetConfig:
    """Spend limits and token prices for paid reasoning calls."""

    enabled: bool
    per_unit_cap: float
    session_cap: float
    target_cost: float
    breaker_multiplier: float
    min_sample_size: int
    rate_card: dict[str, dict[str, float]]


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for the scoring pipeline and its schedule."""

    concurrency: int
    interval_minutes: int
    clean_content_length: int
    run_on_startup: bool = True


@dataclass(frozen=True)
class DimensionConfig:
    """Weight and aggregation strategy of one scoring dimension."""

    name: str
    weight: float
    aggregator: str


@dataclass(frozen=True)
class RuleOverride:
    """Per-rule weight/enabled override applied at startup."""

    weight: float | None = None
    enabled: bool | None = None


@dataclass(frozen=True)
class RulesConfig:
    """Rule overrides keyed by rule id."""

    overrides: dict[str, RuleOverride] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    ai: AIConfig
    budget: BudgetConfig
    pipeline: PipelineConfig
    dimensions: dict[str, DimensionConfig]
    rules: RulesConfig
    database_path: str
    log_level: str

    @property
    def dimension_weights(self) -> dict[str, float]:
        """Dimension name → weight in the composite score."""
        return {name: d.weight for name, d in self.dimensions.items()}


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR_NAME} references in YAML values.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with all ${VAR_NAME} placeholders replaced
        by their environment variable values.

    Raises:
        ConfigurationError: If a referenced environment variable is not set.
    """
    if isinstance(value, str):
        for var_name in ENV_VAR_PATTERN.findall(value):
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Environment variable '${{{var_name}}}' is required but not set. "
                    f"Add it to your .env file or export it in your shell."
                )
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        ConfigurationError: If the file is missing, empty or invalid YAML.
    """
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ConfigurationError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}")

    return data


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Validate that all required keys exist in a config section.

    Raises:
        ConfigurationError: If any required key is missing.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration section '{section}' must be a mapping")
    missing = [key for key in required if key not in data]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


def _non_negative(value: Any, name: str) -> float:
    """Parse a number and reject negatives."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{name}' must be a number, got {value!r}") from e
    if number < 0:
        raise ConfigurationError(f"'{name}' must be >= 0, got {number}")
    return number


# ═══════════════════════════════════════════════════════════
# Section Builders
# ═══════════════════════════════════════════════════════════


def _build_ai_config(data: dict[str, Any]) -> AIConfig:
    """Build an AIConfig from the 'ai' section of settings.yaml."""
    _validate_keys(data, ["primary_provider", "fallback_provider", "gemini", "groq"], "ai")

    for key in ("primary_provider", "fallback_provider"):
        if data[key] not in PROVIDERS:
            raise ConfigurationError(
                f"ai.{key} must be one of {', '.join(PROVIDERS)}, got '{data[key]}'"
            )
    if data["primary_provider"] == data["fallback_provider"]:
        raise ConfigurationError("ai.primary_provider and ai.fallback_provider must differ")

    target_keys = ["api_key", "model", "max_tokens", "temperature", "rpm_limit"]
    gemini = data["gemini"]
    groq = data["groq"]
    _validate_keys(gemini, target_keys, "ai.gemini")
    _validate_keys(groq, target_keys, "ai.groq")

    return AIConfig(
        primary_provider=data["primary_provider"],
        fallback_provider=data["fallback_provider"],
        timeout_seconds=_non_negative(data.get("timeout_seconds", 30), "ai.timeout_seconds"),
        gemini=GeminiConfig(
            api_key=gemini["api_key"],
            model=gemini["model"],
            max_tokens=int(gemini["max_tokens"]),
            temperature=float(gemini["temperature"]),
            rpm_limit=int(gemini["rpm_limit"]),
        ),
        groq=GroqConfig(
            api_key=groq["api_key"],
            model=groq["model"],
            max_tokens=int(groq["max_tokens"]),
            temperature=float(groq["temperature"]),
            rpm_limit=int(groq["rpm_limit"]),
        ),
    )


def _build_budget_config(data: dict[str, Any]) -> BudgetConfig:
    """Build a BudgetConfig from the 'budget' section.

    Raises:
        ConfigurationError: If a limit is negative or a rate-card entry
            lacks a numeric 'input' or 'output' price.
    """
    _validate_keys(data, ["per_unit_cap", "session_cap"], "budget")

    rate_card: dict[str, dict[str, float]] = {}
    for model, rates in (data.get("rate_card") or {}).items():
        if not isinstance(rates, dict) or "input" not in rates or "output" not in rates:
            raise ConfigurationError(
                f"Rate card entry for '{model}' needs 'input' and 'output' prices"
            )
        rate_card[str(model)] = {
            "input": _non_negative(rates["input"], f"budget.rate_card.{model}.input"),
            "output": _non_negative(rates["output"], f"budget.rate_card.{model}.output"),
        }

    min_sample_size = int(data.get("min_sample_size", 3))
    if min_sample_size < 0:
        raise ConfigurationError(f"'budget.min_sample_size' must be >= 0, got {min_sample_size}")

    return BudgetConfig(
        enabled=bool(data.get("enabled", True)),
        per_unit_cap=_non_negative(data["per_unit_cap"], "budget.per_unit_cap"),
        session_cap=_non_negative(data["session_cap"], "budget.session_cap"),
        target_cost=_non_negative(data.get("target_cost", 0.003), "budget.target_cost"),
        breaker_multiplier=_non_negative(
            data.get("breaker_multiplier", 5.0), "budget.breaker_multiplier"
        ),
        min_sample_size=min_sample_size,
        rate_card=rate_card,
    )


def _build_pipeline_config(data: dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from the 'pipeline' section."""
    _validate_keys(data, ["concurrency", "interval_minutes"], "pipeline")

    concurrency = int(data["concurrency"])
    if concurrency < 1:
        raise ConfigurationError(f"'pipeline.concurrency' must be >= 1, got {concurrency}")
    interval = int(data["interval_minutes"])
    if interval < 1:
        raise ConfigurationError(f"'pipeline.interval_minutes' must be >= 1, got {interval}")

    return PipelineConfig(
        concurrency=concurrency,
        interval_minutes=interval,
        clean_content_length=int(data.get("clean_content_length", 8000)),
        run_on_startup=bool(data.get("run_on_startup", True)),
    )


def _build_dimensions(data: dict[str, Any]) -> dict[str, DimensionConfig]:
    """Build DimensionConfigs from the 'dimensions' section."""
    if not isinstance(data, dict) or not data:
        raise ConfigurationError("'dimensions' must map at least one dimension to its settings")

    dimensions: dict[str, DimensionConfig] = {}
    for name, raw in data.items():
        raw = raw or {}
        aggregator = raw.get("aggregator", "weighted")
        if aggregator not in AGGREGATORS:
            raise ConfigurationError(
                f"Dimension '{name}' has unknown aggregator '{aggregator}' "
                f"(expected one of {', '.join(AGGREGATORS)})"
            )
        dimensions[name] = DimensionConfig(
            name=name,
            weight=_non_negative(raw.get("weight", 1.0), f"dimensions.{name}.weight"),
            aggregator=aggregator,
        )
    return dimensions


def _build_rules_config(data: dict[str, Any] | None) -> RulesConfig:
    """Build RulesConfig from the optional 'rules' section."""
    overrides: dict[str, RuleOverride] = {}
    for rule_id, raw in (data or {}).items():
        raw = raw or {}
        weight = raw.get("weight")
        overrides[rule_id] = RuleOverride(
            weight=None if weight is None else _non_negative(weight, f"rules.{rule_id}.weight"),
            enabled=None if raw.get("enabled") is None else bool(raw["enabled"]),
        )
    return RulesConfig(overrides=overrides)


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def load_config(
    settings_path: Path | None = None,
    env_path: Path | None = None,
) -> AppConfig:
    """Load the complete application configuration.

    Loads settings.yaml, resolves environment variables, validates all
    required fields, and returns a typed AppConfig instance.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.

    Returns:
        A fully validated AppConfig instance.

    Raises:
        ConfigurationError: If the file is missing, required fields are
            missing or invalid, or env vars are unset.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    settings = _resolve_env_vars(_load_yaml(settings_path or SETTINGS_PATH))

    _validate_keys(
        settings, ["ai", "budget", "pipeline", "dimensions", "database", "logging"], "settings"
    )

    config = AppConfig(
        ai=_build_ai_config(settings["ai"]),
        budget=_build_budget_config(settings["budget"]),
        pipeline=_build_pipeline_config(settings["pipeline"]),
        dimensions=_build_dimensions(settings["dimensions"]),
        rules=_build_rules_config(settings.get("rules")),
        database_path=settings["database"]["path"],
        log_level=settings["logging"]["level"],
    )

    logger.info("Configuration loaded successfully")
    logger.debug("Database path: %s", config.database_path)
    logger.debug("AI primary provider: %s", config.ai.primary_provider)
    logger.debug(
        "Budget: per-unit $%.4f, session $%.2f",
        config.budget.per_unit_cap, config.budget.session_cap,
    )

    return config
