"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Optional, Union


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str

    # Application
    APP_NAME: str = "ShowBuddy Booking Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Booking Settings
    HOLD_DURATION_SECONDS: int = 300
    MAX_SEATS_PER_HOLD: int = 10
    MAX_ACTIVE_HOLDS_PER_USER: int = 3
    CURRENCY: str = "INR"

    # Payments
    PAYMENT_SECRET: str = "mock-payment-secret"
    PAYMENT_VERIFY_RETRIES: int = 3
    LEDGER_WRITE_RETRIES: int = 3
    RETRY_INITIAL_DELAY: float = 0.2

    # Background Workers
    BACKGROUND_WORKERS_ENABLED: bool = True
    HOLD_EXPIRY_CHECK_INTERVAL_SECONDS: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300
    REDIS_SEATS_TTL: int = 30
    IDEMPOTENCY_TTL: int = 86400

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # CORS
    CORS_ORIGINS: Union[List[str], str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://show-buddy.vercel.app",
    ]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


# Global settings instance
settings = Settings()
