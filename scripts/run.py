#!/usr/bin/env python3
"""Content KPI Engine — Application Runner.

Checks the environment and configuration, then starts the scoring
service. Exits with status 1 when a check fails.

Usage:
    python scripts/run.py
    python scripts/run.py --check    # checks only, do not start
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

BANNER = r"""
╔══════════════════════════════════════════════════════════╗
║                                                          ║
║    ██╗  ██╗██████╗ ██╗                                   ║
║    ██║ ██╔╝██╔══██╗██║                                   ║
║    █████╔╝ ██████╔╝██║                                   ║
║    ██╔═██╗ ██╔═══╝ ██║                                   ║
║    ██║  ██╗██║     ██║                                   ║
║    ╚═╝  ╚═╝╚═╝     ╚═╝                                   ║
║                                                          ║
║              Content KPI Engine v1.0                     ║
║         Composite Content Quality Scoring                ║
║                                                          ║
╚══════════════════════════════════════════════════════════╝
"""

# Values left over from .env.example
PLACEHOLDERS = ("", "test", "your-gemini-api-key", "your-groq-api-key")


def _mask(value: str) -> str:
    return f"{value[:6]}...{value[-4:]}" if len(value) > 10 else "***"


def check_env() -> bool:
    """.env present and every API key it should define is filled in."""
    env_path = PROJECT_ROOT / ".env"
    if not env_path.exists():
        print("❌ .env file not found!")
        print("   Copy .env.example to .env and fill in your API keys.")
        return False

    from dotenv import load_dotenv
    load_dotenv(env_path)
    print("✅ .env loaded")

    ok = True
    for var in ("GEMINI_API_KEY", "GROQ_API_KEY"):
        value = os.environ.get(var, "")
        if value in PLACEHOLDERS:
            print(f"❌ {var} not set (still the .env.example placeholder?)")
            ok = False
        else:
            print(f"✅ {var} = {_mask(value)}")
    return ok


def check_config() -> bool:
    """settings.yaml loads, and the configured models have prices."""
    from content_kpi.config import load_config
    from content_kpi.errors import ConfigurationError

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"❌ config/settings.yaml: {e}")
        return False
    print("✅ config/settings.yaml valid")

    ai = config.ai
    targets = {"gemini": ai.gemini.model, "groq": ai.groq.model}
    print(
        f"✅ Reasoning: {ai.primary_provider} ({targets[ai.primary_provider]}) → "
        f"{ai.fallback_provider} ({targets[ai.fallback_provider]})"
    )
    for provider, model in targets.items():
        if model not in config.budget.rate_card:
            print(f"⚠️  No rate card entry for {model} ({provider}); the default rate applies")

    budget = config.budget
    if budget.enabled:
        print(f"✅ Budget: ${budget.per_unit_cap:.4f}/call, ${budget.session_cap:.2f}/cycle")
    else:
        print("⚠️  Budget disabled: paid calls are not capped")

    weights = ", ".join(f"{d.name}={d.weight:g} ({d.aggregator})" for d in config.dimensions.values())
    print(f"✅ Dimensions: {weights}")
    return True


def preflight_checks() -> bool:
    """Run every check; data/ and logs/ are created on the way."""
    os.chdir(str(PROJECT_ROOT))

    for d in ("data", "logs"):
        (PROJECT_ROOT / d).mkdir(exist_ok=True)

    env_ok = check_env()
    # ${VAR} placeholders cannot resolve without the keys
    config_ok = check_config() if env_ok else False
    return env_ok and config_ok


def main() -> None:
    """Entry point: run checks then start the service."""
    print(BANNER)

    print("═══ Pre-flight Checks ═══\n")
    if not preflight_checks():
        print("\n❌ Pre-flight checks failed! Fix the issues above and try again.")
        sys.exit(1)
    print("\n✅ All checks passed!\n")

    if "--check" in sys.argv[1:]:
        return

    print("═══ Starting Content KPI Engine ═══\n")
    from content_kpi.main import main as app_main
    app_main()


if __name__ == "__main__":
    main()
