# salesync/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Operator (HTTP Basic) credentials for the manual trigger and admin routes
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Marketplace webhook secrets (HMAC-SHA256)
    EBAY_WEBHOOK_SECRET: str = ""
    POSHMARK_WEBHOOK_SECRET: str = ""
    MERCARI_WEBHOOK_SECRET: str = ""
    DEPOP_WEBHOOK_SECRET: str = ""
    FACEBOOK_WEBHOOK_SECRET: str = ""
    FACEBOOK_WEBHOOK_VERIFY_TOKEN: str = ""
    VINTED_WEBHOOK_SECRET: str = ""
    GRAILED_WEBHOOK_SECRET: str = ""
    THE_REALREAL_WEBHOOK_SECRET: str = ""
    VESTIAIRE_WEBHOOK_SECRET: str = ""
    TRADESY_WEBHOOK_SECRET: str = ""
    ETSY_WEBHOOK_SECRET: str = ""
    AMAZON_WEBHOOK_SECRET: str = ""
    SHOPIFY_WEBHOOK_SECRET: str = ""
    CUSTOM_WEBHOOK_SECRET: str = ""

    # Marketplace API base URLs (overridable for sandboxes)
    EBAY_API_BASE_URL: str = "https://api.ebay.com"
    POSHMARK_API_BASE_URL: str = "https://api.poshmark.com"
    FACEBOOK_GRAPH_API_BASE_URL: str = "https://graph.facebook.com/v18.0"
    MARKETPLACE_REQUEST_TIMEOUT: float = 30.0

    # Circuit breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_RESET_TIMEOUT_MS: int = 60000
    CIRCUIT_BREAKER_HALF_OPEN_MAX_ATTEMPTS: int = 3

    # Delisting
    DELISTING_MAX_RETRIES: int = 3
    DELISTING_BATCH_SIZE: int = 5
    DELISTING_BATCH_DELAY_MS: int = 1000
    DELISTING_PENDING_LIMIT: int = 50
    DELISTING_RETRY_MAX_JOBS: int = 10
    MANUAL_CONFIRMATION_WINDOW_DAYS: int = 7

    # Sale events whose delisting job could not be derived
    SALE_EVENT_MAX_PROCESSING_ATTEMPTS: int = 3
    SALE_EVENT_QUEUE_BATCH_SIZE: int = 50

    # Scheduler
    SCHEDULER_ENABLED: bool = False
    POLLING_ENABLED: bool = True
    PROCESS_PENDING_INTERVAL_SECONDS: int = 60
    RETRY_FAILED_INTERVAL_SECONDS: int = 300
    PROCESS_SALE_EVENTS_INTERVAL_SECONDS: int = 120

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore"
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()

def get_webhook_secret(setting_name: str) -> str:
    """Get a marketplace webhook secret by its settings field name"""
    return getattr(get_settings(), setting_name, "") or ""
