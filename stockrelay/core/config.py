# stockrelay/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Sync engine settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Security
    WEBHOOK_SECRET: str = ""
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Shopify API
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_REQUEST_TIMEOUT: float = 30.0

    # Storage for idempotency keys, authoritative inventory and the audit trail
    STORAGE_BACKEND: str = "memory"  # "memory" or "database"
    IDEMPOTENCY_TTL_HOURS: int = 24
    IDEMPOTENCY_PURGE_INTERVAL_MINUTES: int = 60

    # Rate limiting
    RATE_LIMIT_MAX_CONSECUTIVE_ERRORS: int = 5
    RATE_LIMIT_BASE_BACKOFF_MS: int = 1000
    RATE_LIMIT_MAX_BACKOFF_MS: int = 60000
    RATE_LIMIT_JITTER: float = 0.25
    RATE_LIMIT_APPROACHING_FRACTION: float = 0.1
    RATE_LIMIT_REST_APPROACHING: int = 10
    RATE_LIMIT_PACING_DELAY_MS: int = 500

    # Propagation
    DIRECT_WRITE_MAX_DELAY_MS: int = 5000
    QUEUE_FLUSH_INTERVAL_SECONDS: float = 2.0
    QUEUE_BATCH_SIZE: int = 50
    QUEUE_MAX_DELAY_MS: int = 10000

    # Mapping records (JSON export from the mapping service)
    MAPPINGS_FILE: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
