"""
Application configuration management using Pydantic settings.
"""
import json
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "Webhook Ingestion Pipeline"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "local"  # local, staging, production

    # API
    API_V1_PREFIX: str = "/api/v1"
    TENANT_HEADER: str = "X-Tenant-ID"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from environment variable.

        Supports:
        - JSON array: '["https://example.com","https://app.example.com"]'
        - Comma-separated: 'https://example.com,https://app.example.com'
        - Single string: 'https://example.com'
        """
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass

            if ',' in v:
                return [origin.strip() for origin in v.split(',') if origin.strip()]

            return [v.strip()] if v.strip() else []

        return v

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/webhooks_db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    STORAGE_TIMEOUT_SECONDS: float = 5.0  # Deadline for record persistence

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_CACHE_TTL: int = 3600
    CACHE_ENABLED: bool = True
    CALCULATED_FIELD_CACHE_TTL: int = 300

    # Rate limiting
    DEFAULT_RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_WINDOW_MINUTES: int = 1
    RATE_LIMIT_SWEEP_MULTIPLIER: int = 5  # Windows older than N x window are swept

    # Deduplication / retention
    DEDUPE_WINDOW_HOURS: int = 72
    RETENTION_SWEEP_BATCH_SIZE: int = 1000

    # Signature verification
    SIGNATURE_TOLERANCE_SECONDS: int = 300  # Max age of timestamped signatures

    # Background work: "inline" runs follow-ups after the response in-process,
    # "celery" hands them to the worker pool.
    BACKGROUND_BACKEND: str = "inline"
    ALERT_EVALUATION_INTERVAL_SECONDS: int = 60

    # Notifications
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: str = "alerts@webhook-pipeline.local"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    # Monitoring
    ENABLE_METRICS: bool = True


settings = Settings()
