"""
Configuration — environment-driven settings built once at startup.

    from ordergate.config import get_settings

    settings = get_settings()
    settings.mock_mode          # provider calls short-circuit
    settings.provider_timeout   # seconds

Numeric knobs that fail to parse, or are zero/negative, fall back to
their defaults instead of failing startup.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ═══════════════════════════════════════════════════════════════════════════════
# Defaults
# ═══════════════════════════════════════════════════════════════════════════════

DEFAULT_PROVIDER_TIMEOUT_MS = 15_000
DEFAULT_DUPLICATE_WINDOW_MS = 60_000
DEFAULT_ANON_DUPLICATE_WINDOW_MS = 20_000
DEFAULT_DUPLICATE_LOOKBACK_LIMIT = 5
MAX_DUPLICATE_LOOKBACK_LIMIT = 20


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


# ═══════════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════════


class Settings(BaseSettings):
    # --- Runtime ---
    app_env: str = "development"
    database_url: str = "sqlite+aiosqlite:///./ordergate.db"
    log_level: str = "INFO"
    log_json: bool = False

    # --- Payment provider ---
    toss_secret_key: str | None = None
    toss_client_key: str | None = None
    toss_api_base_url: str = "https://api.tosspayments.com/v1"
    toss_timeout_ms: int = DEFAULT_PROVIDER_TIMEOUT_MS
    toss_mock_mode: bool = False
    toss_webhook_secret: str | None = None
    toss_webhook_signature_header: str = "toss-signature"

    # --- Order deduplication ---
    public_order_duplicate_window_ms: int = DEFAULT_DUPLICATE_WINDOW_MS
    public_order_anon_duplicate_window_ms: int = DEFAULT_ANON_DUPLICATE_WINDOW_MS
    public_order_duplicate_lookback_limit: int = DEFAULT_DUPLICATE_LOOKBACK_LIMIT

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("toss_timeout_ms", mode="before")
    @classmethod
    def _timeout_fallback(cls, value: Any) -> int:
        return _positive_int(value, DEFAULT_PROVIDER_TIMEOUT_MS)

    @field_validator("public_order_duplicate_window_ms", mode="before")
    @classmethod
    def _window_fallback(cls, value: Any) -> int:
        return _positive_int(value, DEFAULT_DUPLICATE_WINDOW_MS)

    @field_validator("public_order_anon_duplicate_window_ms", mode="before")
    @classmethod
    def _anon_window_fallback(cls, value: Any) -> int:
        return _positive_int(value, DEFAULT_ANON_DUPLICATE_WINDOW_MS)

    @field_validator("public_order_duplicate_lookback_limit", mode="before")
    @classmethod
    def _lookback_fallback(cls, value: Any) -> int:
        limit = _positive_int(value, DEFAULT_DUPLICATE_LOOKBACK_LIMIT)
        return min(limit, MAX_DUPLICATE_LOOKBACK_LIMIT)

    @field_validator("toss_secret_key", "toss_webhook_secret", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def mock_mode(self) -> bool:
        """Explicit flag, or no secret key outside production."""
        return self.toss_mock_mode or (
            self.toss_secret_key is None and not self.is_production
        )

    @property
    def provider_timeout(self) -> float:
        return self.toss_timeout_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()


__all__ = (
    "Settings",
    "get_settings",
    "DEFAULT_PROVIDER_TIMEOUT_MS",
    "DEFAULT_DUPLICATE_WINDOW_MS",
    "DEFAULT_ANON_DUPLICATE_WINDOW_MS",
    "DEFAULT_DUPLICATE_LOOKBACK_LIMIT",
    "MAX_DUPLICATE_LOOKBACK_LIMIT",
)
