"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (SQLite for local runs and tests).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="afya_intake")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour
    # Upper bound for a single statement (PostgreSQL only).
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000)

    # JWT Authentication - verifies tokens issued by the auth service
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # Packet status callback (external generation worker)
    # Unset means every callback is rejected.
    WEBHOOK_SECRET: Optional[str] = Field(default=None)
    WEBHOOK_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    WEBHOOK_RETRY_BASE_DELAY_S: float = Field(default=0.2)
    WEBHOOK_RETRY_MAX_DELAY_S: float = Field(default=2.0)

    # Packet lifecycle
    PACKET_WRITE_CONFLICT_RETRIES: int = Field(default=5, ge=1, le=50)
    PACKET_MAX_GENERATION_FAILURES: int = Field(default=3, ge=1)

    # Generation hand-off
    PACKET_DISPATCH_ENABLED: bool = Field(default=True)
    GENERATION_WORKER_URL: Optional[str] = Field(default=None)
    GENERATION_WORKER_TIMEOUT_S: int = Field(default=15)
    PUBLIC_API_BASE_URL: str = Field(default="http://localhost:8000")

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # PDF artifacts
    PDF_STORAGE_PATH: str = Field(default="./public/packets")
    PDF_PUBLIC_BASE_URL: str = Field(default="/packets")
    PDF_BRAND_COLOR: str = Field(default="#14b8a6")
    PDF_AUTHOR: str = Field(default="Afya Performance")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Email Configuration
    EMAIL_ENABLED: bool = Field(default=False)
    SMTP_SERVER: str = Field(default="localhost")
    SMTP_PORT: int = Field(default=587)
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    SMTP_TIMEOUT_S: int = Field(default=10)
    FROM_EMAIL: str = Field(default="noreply@afyaperformance.com")
    FROM_NAME: str = Field(default="Afya Performance")
    # Comma-separated; used when no admin users exist yet.
    STAFF_NOTIFICATION_EMAILS: Optional[str] = Field(default=None)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Web app base URL (links in client/staff emails).
    WEB_APP_BASE_URL: str = Field(default="http://localhost:3000")

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.1)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def staff_notification_emails(self) -> List[str]:
        raw = self.STAFF_NOTIFICATION_EMAILS or ""
        return [e.strip().lower() for e in raw.split(",") if e.strip()]


# Global settings instance
settings = Settings()
