"""
Finsync - Configuration Settings
"""
from typing import Dict, List, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Finsync Provider Gateway"
    APP_ENV: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # =========================
    # Database - PostgreSQL
    # =========================
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "finsync"
    POSTGRES_USER: str = "finsync_user"
    POSTGRES_PASSWORD: str = "dev_password_123"
    # Direct DATABASE_URL from environment (overrides individual settings)
    DATABASE_URL: str = ""

    @property
    def database_url(self) -> str:
        """Get the async database URL."""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            # Ensure it uses asyncpg driver
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            return url
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Get the sync database URL for Alembic."""
        url = self.database_url
        if "+asyncpg" in url:
            url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
        return url

    # =========================
    # Circuit Breaker
    # =========================
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CIRCUIT_SUCCESS_THRESHOLD: int = Field(default=2, ge=1)
    CIRCUIT_OPEN_TIMEOUT_MS: int = Field(default=60_000, ge=0)
    # Restore OPEN breakers from persisted health rows on startup
    CIRCUIT_STATE_PERSISTENT: bool = False

    # =========================
    # Health Monitor
    # =========================
    HEALTH_WINDOW_MS: int = Field(default=300_000, gt=0)
    HEALTH_WARNING_ERROR_RATE: float = 10.0   # percent
    HEALTH_CRITICAL_ERROR_RATE: float = 50.0  # percent
    HEALTH_WARNING_LATENCY_MS: float = 2000.0
    HEALTH_CHECK_TIMEOUT_MS: int = Field(default=1000, gt=0)

    # =========================
    # Provider Calls
    # =========================
    PROVIDER_CALL_TIMEOUT_MS: int = Field(default=10_000, gt=0)
    PROVIDER_CALL_TIMEOUTS_MS: Dict[str, int] = {}
    # provider -> error code -> error kind ("*" matches every provider)
    ERROR_CLASSIFICATION_OVERRIDES: Dict[str, Dict[str, str]] = {}
    DEFAULT_PROVIDER_BY_REGION: Dict[str, str] = {"US": "plaid", "MX": "belvo"}
    ATTEMPT_LOG_BACKEND: Literal["database", "memory"] = "database"

    # provider -> {requests_per_minute, requests_per_hour, burst_size}
    RATE_LIMITS: Dict[str, Dict[str, int]] = {
        "plaid": {"requests_per_minute": 100, "requests_per_hour": 3000, "burst_size": 20},
        "belvo": {"requests_per_minute": 60, "requests_per_hour": 1000, "burst_size": 10},
        "mx": {"requests_per_minute": 60, "requests_per_hour": 1000, "burst_size": 10},
        "finicity": {"requests_per_minute": 50, "requests_per_hour": 1000, "burst_size": 10},
    }
    RATE_LIMIT_MAX_BACKOFF_MS: int = Field(default=300_000, gt=0)

    @field_validator("PROVIDER_CALL_TIMEOUTS_MS", "RATE_LIMITS", mode="after")
    @classmethod
    def normalize_provider_keys(cls, v):
        return {k.strip().lower(): value for k, value in v.items()}

    @field_validator("DEFAULT_PROVIDER_BY_REGION", mode="after")
    @classmethod
    def normalize_region_defaults(cls, v):
        return {region.strip().upper(): provider.strip().lower() for region, provider in v.items()}

    # =========================
    # Provider Credentials
    # =========================
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENV: str = "sandbox"
    PLAID_WEBHOOK_SECRET: str = ""

    BELVO_SECRET_KEY_ID: str = ""
    BELVO_SECRET_KEY_PASSWORD: str = ""
    BELVO_ENV: str = "sandbox"
    BELVO_WEBHOOK_SECRET: str = ""

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # =========================
    # Feature Flags
    # =========================
    # Run one provider health sweep per default region at startup
    HEALTH_CHECK_ON_STARTUP: bool = True


# Create global settings instance
settings = Settings()
