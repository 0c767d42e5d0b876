"""Centralized configuration for the AdvisorQ backend.

Typed constants for the advisor gatekeeper, insight cache, text-generation
provider, diagnostics and client.  Environment variable overrides use safe
defaults so the app starts without extra env configuration; provider
credentials are read lazily so a ``.env`` file loaded at app start is honored.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# --- App ---
APP_VERSION: str = "1.0.0"
APP_NAME: str = "AdvisorQ API"


def get_environment() -> str:
    """Return the deployment environment (development, test or production)."""
    return os.getenv("ADVISORQ_ENV", "development").strip().lower()


def is_production() -> bool:
    return get_environment() == "production"


# --- Advisor Gatekeeper ---
ADVISOR_RATE_LIMIT_MAX: int = 8
ADVISOR_RATE_LIMIT_WINDOW_SECONDS: float = 60.0
ADVISOR_RATE_LIMIT_MAX_USERS: int = 10000
ADVISOR_REGENERATE_COOLDOWN_SECONDS: float = 15.0
ADVISOR_COOLDOWN_MAX_USERS: int = 10000
ADVISOR_FREE_USAGE_MAX_USERS: int = 10000
ADVISOR_FREE_USAGE_RETENTION_SECONDS: float = 3 * 24 * 60 * 60

# --- Insight Cache ---
ADVISOR_CACHE_MAX_ENTRIES: int = int(os.getenv("ADVISORQ_CACHE_MAX_ENTRIES", "5000"))

# --- Snapshot ---
SNAPSHOT_TOP_CATEGORIES: int = 5
SNAPSHOT_TOP_BUDGETS: int = 8
SNAPSHOT_TOP_RECURRING: int = 5
SNAPSHOT_TREND_MONTHS: int = 3
SNAPSHOT_TRAILING_DAYS: int = 30
SNAPSHOT_DEFAULT_SAVINGS_TARGET_RATE: float = 20.0
SNAPSHOT_DEFAULT_RISK_PROFILE: str = "medium"
BUDGET_NEAR_LIMIT_PERCENT: float = 80.0
BUDGET_OVER_LIMIT_PERCENT: float = 100.0
LOW_SAVINGS_RATE_THRESHOLD: float = 0.1
IRREGULAR_INCOME_RATIO: float = 1.5
EMERGENCY_FUND_MONTHS: int = 3

# --- Provider ---
PROVIDER_NAME: str = "cloudflare"
PROVIDER_BASE_URL: str = "https://api.cloudflare.com/client/v4"
PROVIDER_DEFAULT_MODEL: str = "@cf/meta/llama-3.1-8b-instruct"
PROVIDER_TIMEOUT_SECONDS: float = 45.0
PROVIDER_MAX_ATTEMPTS: int = 2
PROVIDER_MAX_TOKENS: int = 900
PROVIDER_TEMPERATURE: float = 0.3
PROVIDER_DEFAULT_RETRY_AFTER_SECONDS: int = 60
PROVIDER_DETAIL_MAX_CHARS: int = 180

# --- Diagnostics ---
DIAGNOSTICS_MAX_EVENTS: int = 50
DIAGNOSTICS_RESERVATION_MAX_AGE_SECONDS: float = 5 * 60
DIAGNOSTICS_REDACTED_VALUE: str = "[redacted]"

# --- Client ---
CLIENT_API_BASE_URL: str = os.getenv("ADVISORQ_API_BASE_URL", "http://localhost:8000")
CLIENT_TIMEOUT_SECONDS: float = float(os.getenv("ADVISORQ_CLIENT_TIMEOUT", "60"))


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and tuning for the text-generation provider."""

    api_token: str | None = None
    account_id: str | None = None
    model: str = PROVIDER_DEFAULT_MODEL
    base_url: str = PROVIDER_BASE_URL
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS
    max_attempts: int = PROVIDER_MAX_ATTEMPTS
    max_tokens: int = PROVIDER_MAX_TOKENS
    temperature: float = PROVIDER_TEMPERATURE

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.account_id and self.model)


def load_provider_settings() -> ProviderSettings:
    """Build provider settings from ADVISORQ_PROVIDER_* environment variables."""
    return ProviderSettings(
        api_token=os.getenv("ADVISORQ_PROVIDER_API_TOKEN") or None,
        account_id=os.getenv("ADVISORQ_PROVIDER_ACCOUNT_ID") or None,
        model=os.getenv("ADVISORQ_PROVIDER_MODEL", PROVIDER_DEFAULT_MODEL),
        base_url=os.getenv("ADVISORQ_PROVIDER_BASE_URL", PROVIDER_BASE_URL),
        timeout_seconds=float(
            os.getenv("ADVISORQ_PROVIDER_TIMEOUT", str(PROVIDER_TIMEOUT_SECONDS))
        ),
        max_attempts=int(os.getenv("ADVISORQ_PROVIDER_MAX_ATTEMPTS", str(PROVIDER_MAX_ATTEMPTS))),
        max_tokens=int(os.getenv("ADVISORQ_PROVIDER_MAX_TOKENS", str(PROVIDER_MAX_TOKENS))),
        temperature=PROVIDER_TEMPERATURE,
    )
