"""
Application Settings
Load from environment variables
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings from environment"""

    # ======================
    # Application
    # ======================
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    MARKET_DATA_CONFIG_FILE: str = "config/app.yml"

    # ======================
    # Database
    # ======================
    DATABASE_URL: str = "sqlite+aiosqlite:///./advisor.db"
    AUTO_CREATE_TABLES: bool = True

    # ======================
    # Redis
    # ======================
    REDIS_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PREFIX: str = "advisor:"

    # ======================
    # Market Data Providers
    # ======================
    YAHOO_BASE_URL: str = "https://query1.finance.yahoo.com"
    EXCHANGERATE_API_BASE_URL: str = "https://v6.exchangerate-api.com/v6"
    EXCHANGERATE_API_KEY: Optional[str] = None
    OPEN_EXCHANGE_RATES_BASE_URL: str = "https://openexchangerates.org/api"
    OPEN_EXCHANGE_RATES_APP_ID: Optional[str] = None
    FUNDAMENTALS_API_BASE_URL: Optional[str] = None
    FUNDAMENTALS_API_KEY: Optional[str] = None

    # ======================
    # Retry & Circuit Breaker
    # ======================
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SCHEDULE_MS: List[int] = [1000, 2000, 4000]
    RETRY_TIMEOUT_MS: int = 10000
    RETRY_MAX_DELAY_MS: int = 10000
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_RESET_TIMEOUT_MS: int = 300000

    # ======================
    # Cache
    # ======================
    PRICES_CACHE_TTL_SECONDS: int = 86400
    RATES_CACHE_TTL_SECONDS: int = 86400
    FUNDAMENTALS_CACHE_TTL_SECONDS: int = 604800
    STALE_RETENTION_SECONDS: int = 2592000

    # ======================
    # Currency
    # ======================
    SUPPORTED_CURRENCIES: List[str] = ["USD", "EUR", "GBP", "BRL", "CAD", "AUD", "JPY", "CHF"]
    STALE_RATE_THRESHOLD_HOURS: int = 24

    # ======================
    # Recommendations
    # ======================
    RECOMMENDATION_TTL_HOURS: int = 24
    BATCH_MAX_CONCURRENCY: int = 5
    AUDIT_QUEUE_SIZE: int = 1000

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="forbid",
    )


# Global settings instance
settings = Settings()
