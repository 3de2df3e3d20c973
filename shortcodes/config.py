"""Configuration management for the shortcode allocation service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortcodes.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    ttl = settings.RESERVATION_TTL_SECONDS

Key Behaviours
===============
- Settings are cached after first access.
- Environment variables override defaults automatically.
- Code lengths: SHORT_CODE_LENGTH until LENGTH_ESCALATION_AFTER_ATTEMPT,
  ESCALATED_SHORT_CODE_LENGTH afterwards.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortcode-allocator"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortcodes:shortcodes@db:5432/shortcodes"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code generation
    SHORT_CODE_LENGTH: int = 8
    ESCALATED_SHORT_CODE_LENGTH: int = 9
    # Attempts with a zero-based index above this value use the escalated length
    LENGTH_ESCALATION_AFTER_ATTEMPT: int = 5
    MAX_ALLOCATION_ATTEMPTS: int = 10
    SLOW_ALLOCATION_WARN_MS: int = 100
    SLOW_ALLOCATION_WARN_ATTEMPTS: int = 3

    # Reservations
    RESERVATION_KEY_PREFIX: str = "reserved"
    RESERVATION_TTL_SECONDS: int = 300

    # Allocation metrics aggregates
    METRICS_KEY_PREFIX: str = "metrics"
    METRICS_RETENTION_SECONDS: int = 60 * 60 * 24 * 90

    # Webhook de-duplication
    WEBHOOK_KEY_PREFIX: str = "webhook"
    WEBHOOK_IDEMPOTENCY_TTL_SECONDS: int = 60 * 60 * 24

    # Rate limiting
    RATE_LIMIT_KEY_PREFIX: str = "rate_limit"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
